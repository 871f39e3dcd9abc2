"""重复导入检测（导入前预检，只读）。

信号：
- 内容哈希：回看窗口内同类型任一批次（含 failed）的 SHA-256 完全一致 → 确定重复，风险 high；
- 文件名相似度（归一化编辑距离）≥ 阈值 → 至少 medium，≥ 0.9 → high；
- 日期区间重叠（仅销售类数据）→ 至少 medium；与名称相似同时命中同一批次 → high；
- 文件大小接近（≥ 0.9）但名称不相似 → low，仅作提示。

名称、日期、大小三类信号只比对未失败的批次。

该流程从不阻断导入：结果交给调用方（界面）决定是否继续。
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from retail_ingest.core.config import ImportConfig
from retail_ingest.core.errors import FileError, InfrastructureError
from retail_ingest.core.import_types import ImportTypeSpec
from retail_ingest.core.models import (
    RISK_ORDER,
    DuplicateSignal,
    ImportBatch,
    MatchKind,
    PreviousImport,
    RiskLevel,
    max_risk,
)
from retail_ingest.core.rules.similarity import (
    DateRange,
    name_similarity,
    ranges_overlap,
    size_similarity,
)
from retail_ingest.data.db.duplicate_check_repo import DuplicateCheckLogRepo
from retail_ingest.data.db.import_batch_repo import ImportBatchRepo
from retail_ingest.flows.file_loader import file_sha256, infer_date_range, load_upload

logger = logging.getLogger(__name__)

HIGH_NAME_SIMILARITY = 0.9
SIZE_SIMILARITY_THRESHOLD = 0.9
MAX_PREVIOUS_IMPORTS = 10


def check_duplicates(
    *,
    spec: ImportTypeSpec,
    file_name: str,
    batch_repo: ImportBatchRepo,
    content: bytes | None = None,
    file_hash: str | None = None,
    file_size: int | None = None,
    date_range: DateRange | None = None,
    check_period_days: int | None = None,
    log_repo: DuplicateCheckLogRepo | None = None,
    now: datetime | None = None,
) -> DuplicateSignal:
    """
    评估一次上传与近期导入重复的风险。

    Args:
        spec: 导入类型规格。
        file_name: 待上传文件名。
        batch_repo: 导入批次仓储（只读）。
        content: 文件内容；提供时计算哈希与大小，并在未声明日期区间时从内容推断。
        file_hash: 已知的内容哈希（未提供 content 时必填）。
        file_size: 已知的文件大小。
        date_range: 调用方声明的数据日期区间（闭区间）。
        check_period_days: 回看天数（默认 DUPLICATE_LOOKBACK_DAYS）。
        log_repo: 检测日志仓储；提供时写入一条审计日志。
        now: 当前时间（测试注入）。

    Returns:
        DuplicateSignal。

    Raises:
        ValueError: 既没有 content 也没有 file_hash。
        InfrastructureError: 批次查询失败。
    """
    if content is not None:
        file_hash = file_sha256(content)
        file_size = len(content)
    if not file_hash:
        raise ValueError("必须提供文件内容或文件哈希")
    size = file_size or 0

    days = check_period_days if check_period_days is not None else ImportConfig.get_lookback_days()
    now = now or datetime.now()
    since = now - timedelta(days=days)

    if date_range is None and content is not None and spec.overlap_check:
        date_range = _infer_range(content, file_name, spec)

    candidates = batch_repo.list_since(spec.import_type, since)
    threshold = ImportConfig.get_name_similarity_threshold()

    matched: list[tuple[RiskLevel, PreviousImport]] = []
    warnings: list[str] = []
    kinds: set[MatchKind] = set()
    for batch in candidates:
        risk, previous, batch_warnings = _assess_batch(
            batch,
            file_name=file_name,
            file_hash=file_hash,
            file_size=size,
            date_range=date_range if spec.overlap_check else None,
            name_threshold=threshold,
            hash_only=batch.status == "failed",
        )
        if previous is None:
            continue
        matched.append((risk, previous))
        warnings.extend(batch_warnings)
        kinds.update(previous.matches)

    risk_level: RiskLevel = "none"
    for risk, _ in matched:
        risk_level = max_risk(risk_level, risk)
    is_duplicate = "exact_hash" in kinds

    matched.sort(key=lambda item: (RISK_ORDER[item[0]], item[1].imported_at), reverse=True)
    previous_imports = tuple(p for _, p in matched[:MAX_PREVIOUS_IMPORTS])

    signal = DuplicateSignal(
        is_duplicate=is_duplicate,
        risk_level=risk_level,
        file_hash=file_hash,
        matched_batches=previous_imports,
        warnings=tuple(warnings),
        recommendations=tuple(_recommendations(kinds, previous_imports)),
        summary={
            "importType": spec.import_type,
            "checkPeriodDays": days,
            "checkedBatches": len(candidates),
            "matchedCount": len(matched),
            "fileSize": size,
            "dateRange": (
                {"start": date_range[0].isoformat(), "end": date_range[1].isoformat()}
                if date_range
                else None
            ),
        },
    )
    logger.info(
        f"[DuplicateCheck] {spec.import_type} {file_name}：风险 {risk_level}，"
        f"命中 {len(matched)}/{len(candidates)} 个批次"
    )

    if log_repo is not None:
        try:
            log_repo.add(import_type=spec.import_type, file_name=file_name, file_size=size, signal=signal)
        except InfrastructureError as err:
            logger.warning(f"[DuplicateCheck] 检测日志写入失败（不影响结果）：{err}")
    return signal


def _infer_range(content: bytes, file_name: str, spec: ImportTypeSpec) -> DateRange | None:
    try:
        return infer_date_range(load_upload(content, file_name), spec)
    except FileError as err:
        logger.debug(f"[DuplicateCheck] 无法从内容推断日期区间：{err}")
        return None


def _assess_batch(
    batch: ImportBatch,
    *,
    file_name: str,
    file_hash: str,
    file_size: int,
    date_range: DateRange | None,
    name_threshold: float,
    hash_only: bool = False,
) -> tuple[RiskLevel, PreviousImport | None, list[str]]:
    """对单个历史批次计算命中方式与风险等级。

    `hash_only` 用于 failed 批次：只比对内容哈希（中途失败的批次可能已写入部分记录）。
    """
    matches: list[MatchKind] = []
    warnings: list[str] = []
    risk: RiskLevel = "none"
    when = batch.created_at.strftime("%Y-%m-%d %H:%M")

    if batch.file_hash and batch.file_hash == file_hash:
        matches.append("exact_hash")
        risk = "high"
        warnings.append(f"文件内容与 {when} 导入的「{batch.file_name}」完全一致")

    similarity = name_similarity(file_name, batch.file_name)
    if hash_only:
        return _previous(batch, risk, matches, similarity, warnings)

    if similarity >= name_threshold:
        matches.append("similar_name")
        risk = max_risk(risk, "high" if similarity >= HIGH_NAME_SIMILARITY else "medium")
        if "exact_hash" not in matches:
            warnings.append(f"文件名与 {when} 导入的「{batch.file_name}」相似（相似度 {similarity:.0%}）")

    if date_range is not None and batch.date_range is not None and ranges_overlap(date_range, batch.date_range):
        matches.append("date_overlap")
        # 名称相似 + 日期重叠 → high
        risk = max_risk(risk, "high" if "similar_name" in matches else "medium")
        start, end = batch.date_range
        warnings.append(
            f"数据日期区间 {date_range[0]} ~ {date_range[1]} 与批次「{batch.file_name}」"
            f"（{start} ~ {end}）重叠"
        )

    if not matches and size_similarity(file_size, batch.file_size) >= SIZE_SIMILARITY_THRESHOLD:
        matches.append("similar_size")
        risk = "low"
        warnings.append(f"文件大小与 {when} 导入的「{batch.file_name}」接近")

    return _previous(batch, risk, matches, similarity, warnings)


def _previous(
    batch: ImportBatch,
    risk: RiskLevel,
    matches: list[MatchKind],
    similarity: float,
    warnings: list[str],
) -> tuple[RiskLevel, PreviousImport | None, list[str]]:
    if not matches:
        return "none", None, []

    previous = PreviousImport(
        batch_id=batch.id,
        file_name=batch.file_name,
        label=batch.label,
        imported_at=batch.created_at,
        total_rows=batch.total_rows,
        imported_rows=batch.imported_rows,
        file_size=batch.file_size,
        matches=tuple(matches),
        name_similarity=similarity,
        date_range=batch.date_range,
    )
    return risk, previous, warnings


def _recommendations(kinds: set[MatchKind], previous: tuple[PreviousImport, ...]) -> list[str]:
    if not kinds:
        return ["未发现重复风险，可以直接导入"]

    tips: list[str] = []
    if "exact_hash" in kinds:
        exact = next((p for p in previous if "exact_hash" in p.matches), None)
        when = f"{exact.imported_at:%Y-%m-%d} " if exact else "近期"
        tips.append(
            f"该文件与 {when}的导入内容完全一致；"
            "重新导入只会按唯一键更新已有记录，不会产生重复数据，如无修改可跳过本次导入"
        )
    if "similar_name" in kinds or "date_overlap" in kinds:
        tips.append("请核对文件的数据日期区间，确认不是已导入过的数据；相同唯一键的记录会被更新而不是重复写入")
    if "date_overlap" in kinds:
        tips.append("如果是补充导入同一时间段的新订单，可以继续；如果是同一份报表的重新导出，建议先确认差异")
    if kinds == {"similar_size"}:
        tips.append("文件大小与历史导入接近，建议抽查几行数据确认后再导入")
    return tips
