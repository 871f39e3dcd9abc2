"""HTTP 入口（FastAPI）。

路由只做薄分发：落盘上传文件 → 构造容器 → 调用流程 → 渲染 JSON。
文件级 / 列级错误在此统一捕获一次并转换为 400；基础设施错误转换为 500。
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from pathlib import Path
from typing import Any, Iterator

from fastapi import APIRouter, Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError, model_validator

from retail_ingest import __version__
from retail_ingest.app.wiring import DependencyContainer
from retail_ingest.core.config import ImportConfig, get_upload_dir
from retail_ingest.core.errors import ColumnError, FileError, ImportFailure, InfrastructureError
from retail_ingest.core.import_types import ImportTypeSpec
from retail_ingest.flows.batch_import import import_file
from retail_ingest.flows.duplicate_check import check_duplicates
from retail_ingest.flows.import_history import batch_to_payload, get_batch, list_batches

logger = logging.getLogger(__name__)

_SPOOL_CHUNK = 1024 * 1024

router = APIRouter(prefix="/api/import", tags=["import"])


class DateRangeIn(BaseModel):
    """重复预检时调用方声明的数据日期区间。"""

    start: date
    end: date

    @model_validator(mode="after")
    def _check_order(self) -> "DateRangeIn":
        if self.end < self.start:
            raise ValueError("结束日期不能早于开始日期")
        return self


def get_container(request: Request) -> Iterator[DependencyContainer]:
    """每个请求一个容器：请求结束时关闭连接。"""
    with DependencyContainer(
        db_path=request.app.state.db_path,
        rules_path=request.app.state.rules_path,
    ) as container:
        yield container


def _fail(status_code: int, error: str, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "message": message, **extra},
    )


def _unknown_type(import_type: str, container: DependencyContainer) -> JSONResponse:
    return _fail(
        400,
        "unknown_import_type",
        f"未知导入类型：{import_type}（可选：{', '.join(container.specs)}）",
    )


def _upload_name(upload: UploadFile) -> str:
    return Path(upload.filename or "upload").name


def _spool_upload(upload: UploadFile) -> Path:
    """
    将上传内容写入 UPLOAD_DIR 下的临时文件。

    Raises:
        FileError: 文件超过 MAX_UPLOAD_BYTES（已写入的部分会被删除）。
    """
    limit = ImportConfig.get_max_upload_bytes()
    suffix = Path(_upload_name(upload)).suffix
    target = get_upload_dir() / f"{uuid.uuid4().hex}{suffix}"
    written = 0
    try:
        with open(target, "wb") as out:
            for chunk in iter(lambda: upload.file.read(_SPOOL_CHUNK), b""):
                written += len(chunk)
                if written > limit:
                    raise FileError(f"文件超过大小上限（{limit // (1024 * 1024)} MiB）：{_upload_name(upload)}")
                out.write(chunk)
    except BaseException:
        target.unlink(missing_ok=True)
        raise
    return target


def _read_upload(upload: UploadFile) -> bytes:
    limit = ImportConfig.get_max_upload_bytes()
    content = upload.file.read(limit + 1)
    if len(content) > limit:
        raise FileError(f"文件超过大小上限（{limit // (1024 * 1024)} MiB）：{_upload_name(upload)}")
    return content


def _import_message(spec: ImportTypeSpec, inserted: int, updated: int, invalid: int) -> str:
    if inserted + updated == 0:
        return f"{spec.label}失败：没有任何行导入成功（{invalid} 行有错误）"
    message = f"{spec.label}完成：新增 {inserted} 条，更新 {updated} 条"
    if invalid:
        message += f"，{invalid} 行有错误已跳过"
    return message


@router.get("/types")
def list_import_types(container: DependencyContainer = Depends(get_container)) -> dict[str, Any]:
    """列出支持的导入类型及其列（首选列名 / 必填）。"""
    types = []
    for spec in container.specs.values():
        required = {f.name for f in spec.required_fields}
        types.append({
            "importType": spec.import_type,
            "label": spec.label,
            "keyFields": list(spec.key_fields),
            "columns": [
                {"field": f.name, "column": f.display_name, "aliases": list(f.aliases), "required": f.name in required}
                for f in spec.fields
            ],
        })
    return {"success": True, "data": types}


@router.post("/duplicate-check")
def duplicate_check(
    file: UploadFile = File(...),
    importType: str = Form(...),
    checkPeriod: int | None = Form(None),
    dateRange: str | None = Form(None),
    container: DependencyContainer = Depends(get_container),
) -> Any:
    """导入前的重复风险预检（只读，不阻断导入）。"""
    if importType not in container.specs:
        return _unknown_type(importType, container)
    if checkPeriod is not None and checkPeriod <= 0:
        return _fail(400, "invalid_argument", "checkPeriod 必须为正整数（天）")

    declared = None
    if dateRange:
        try:
            parsed = DateRangeIn.model_validate_json(dateRange)
        except ValidationError as err:
            return _fail(400, "invalid_argument", f"dateRange 格式无效：{err.errors()[0]['msg']}")
        declared = (parsed.start, parsed.end)

    content = _read_upload(file)
    signal = check_duplicates(
        spec=container.get_spec(importType),
        file_name=_upload_name(file),
        content=content,
        date_range=declared,
        check_period_days=checkPeriod,
        batch_repo=container.get_batch_repo(),
        log_repo=container.check_log_repo,
    )
    return {"success": True, "data": signal.to_payload()}


@router.get("/history")
def import_history(
    import_type: str | None = Query(None, alias="importType"),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    container: DependencyContainer = Depends(get_container),
) -> Any:
    """导入批次分页列表（按创建时间倒序）。"""
    if import_type and import_type not in container.specs:
        return _unknown_type(import_type, container)
    page = list_batches(batch_repo=container.get_batch_repo(), import_type=import_type, limit=limit, offset=offset)
    return {"success": True, "data": page.to_payload()}


@router.get("/status/{batch_id}")
def import_status(batch_id: str, container: DependencyContainer = Depends(get_container)) -> Any:
    """单个批次的状态与错误明细。"""
    try:
        batch = get_batch(batch_id=batch_id, batch_repo=container.get_batch_repo())
    except LookupError as err:
        return _fail(404, "not_found", str(err))
    return {"success": True, "data": batch_to_payload(batch)}


@router.post("/{import_type}")
def import_upload(
    import_type: str,
    file: UploadFile = File(...),
    container: DependencyContainer = Depends(get_container),
) -> Any:
    """上传并导入单个文件（字段名 `file`）。"""
    if import_type not in container.specs:
        return _unknown_type(import_type, container)
    spec = container.get_spec(import_type)

    path = _spool_upload(file)
    result = import_file(
        path=path,
        spec=spec,
        file_name=_upload_name(file),
        content_type=file.content_type,
        batch_repo=container.get_batch_repo(),
        record_repo=container.get_record_repo(spec),
        stock_repo=container.stock_repo,
    )
    return JSONResponse(
        status_code=200 if result.succeeded else 400,
        content={
            "success": result.succeeded,
            "data": result.to_payload(),
            "message": _import_message(spec, result.inserted, result.updated, result.batch.invalid_rows),
        },
    )


async def _handle_column_error(request: Request, exc: ColumnError) -> JSONResponse:
    logger.info(f"[API] 列校验失败：{exc.message}")
    return _fail(400, exc.code, exc.message, missingColumns=exc.expected, foundColumns=exc.found)


async def _handle_file_error(request: Request, exc: FileError) -> JSONResponse:
    logger.info(f"[API] 文件无法处理：{exc.message}")
    return _fail(400, exc.code, exc.message)


async def _handle_infrastructure_error(request: Request, exc: InfrastructureError) -> JSONResponse:
    logger.error(f"[API] 基础设施故障：{exc.message}")
    return _fail(500, exc.code, "服务暂时不可用，请稍后重试")


async def _handle_import_failure(request: Request, exc: ImportFailure) -> JSONResponse:
    logger.warning(f"[API] 导入失败：{exc.message}")
    return _fail(400, exc.code, exc.message)


def create_app(db_path: str | None = None, rules_path: str | None = None) -> FastAPI:
    """
    构造 FastAPI 应用。

    Args:
        db_path: SQLite 路径（默认读取 DB_PATH）。
        rules_path: 导入规则覆盖 JSON（默认读取 IMPORT_RULES_PATH）。
    """
    app = FastAPI(title="retail-ingest", version=__version__)
    app.state.db_path = db_path
    app.state.rules_path = rules_path
    app.include_router(router)
    app.add_exception_handler(ColumnError, _handle_column_error)  # type: ignore[arg-type]
    app.add_exception_handler(FileError, _handle_file_error)  # type: ignore[arg-type]
    app.add_exception_handler(InfrastructureError, _handle_infrastructure_error)  # type: ignore[arg-type]
    app.add_exception_handler(ImportFailure, _handle_import_failure)  # type: ignore[arg-type]
    return app
