"""API 响应模型"""

from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ChartDataResponse(BaseModel):
    """单图表响应"""
    success: bool = Field(True, description="请求是否成功")
    data: List[Dict[str, Any]] = Field(default_factory=list, description="结果行")
    warnings: Optional[List[str]] = Field(None, description="被丢弃的规格字段")


class BatchChartDataResponse(BaseModel):
    """批量响应"""
    success: bool = Field(True, description="批量请求是否执行")
    data: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict, description="各组件的结果行")
    errors: Optional[Dict[str, str]] = Field(None, description="各失败组件的错误信息")
    warnings: Optional[Dict[str, List[str]]] = Field(None, description="各组件被丢弃的字段")


class ErrorResponse(BaseModel):
    """错误响应"""
    success: bool = Field(False, description="恒为 false")
    error: str = Field(..., description="错误信息")


class TableInfo(BaseModel):
    """数据源中的表"""
    model_config = ConfigDict(populate_by_name=True)

    schema_name: str = Field(..., alias="schema", description="模式名")
    name: str = Field(..., description="表名")


class TablesResponse(BaseModel):
    """表列表"""
    success: bool = Field(True, description="请求是否成功")
    data: List[TableInfo] = Field(default_factory=list, description="表")


class ColumnInfo(BaseModel):
    """表的列"""
    name: str = Field(..., description="列名")
    type: str = Field(..., description="数据库类型")


class TableSchemaResponse(BaseModel):
    """表结构"""
    success: bool = Field(True, description="请求是否成功")
    table: str = Field(..., description="表名")
    columns: List[ColumnInfo] = Field(default_factory=list, description="列")
