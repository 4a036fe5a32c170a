"""
Depreciation Service (``ledger_modules.assets.service``).

Responsibility
--------------
Fixed asset register and the monthly depreciation run engine:
calculate a run (schedule lines, no ledger effect), post it as one
balanced journal entry, and reverse a posted run with a mirror entry.

Architecture position
---------------------
**Modules layer**.  Pure arithmetic lives in ``assets.helpers``; every
ledger mutation goes through the kernel ``JournalService``.

State machine
-------------

    CALCULATED ----post----> POSTED ----reverse----> REVERSED
        |
        +----delete----> (gone)

Anything else raises ``InvalidTransitionError``.

Invariants enforced
-------------------
* At most one Calculated or Posted run per fiscal period; a Reversed run
  frees the period for recalculation.
* Posting and reversing require the run's fiscal period to be OPEN
  (checked by the journal engine inside the same transaction).
* Asset balances change only when a run is posted or reversed, and only
  by the amounts on its schedule lines.
* Each public mutating method owns the transaction boundary
  (``commit`` on success, ``rollback`` on failure).

Failure modes
-------------
* ``PeriodAlreadyCalculatedError`` -- live run exists for the period.
* ``InvalidTransitionError`` -- post of a non-Calculated run, reverse of a
  non-Posted run.
* ``PeriodClosedError`` -- the run's period is not OPEN.
* ``ValidationError`` -- stale schedule (asset changed since calculation),
  empty run, bad category/asset input.

Usage::

    service = DepreciationService(session, clock=clock)
    run = service.calculate(2024, 1, calculated_by="controller")
    run = service.post(run.id, posted_by="controller")
"""

from __future__ import annotations

from collections import defaultdict
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_config import LedgerConfig, get_active_config
from ledger_kernel.db.types import enum_value, round_money, to_decimal
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import EntryMetadata, LineSpec
from ledger_kernel.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    PeriodAlreadyCalculatedError,
    ValidationError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.fiscal_period import period_end_date
from ledger_kernel.models.journal import JournalEntryType
from ledger_kernel.services.journal_service import JournalService
from ledger_modules.assets.helpers import calculate_period_depreciation
from ledger_modules.assets.models import (
    AssetCategoryInfo,
    DepreciationPreview,
    DepreciationRunInfo,
    FixedAssetInfo,
    ScheduleLineInfo,
)
from ledger_modules.assets.orm import (
    AssetCategoryModel,
    AssetStatus,
    DepreciationMethod,
    DepreciationRunModel,
    DepreciationRunStatus,
    DepreciationScheduleLineModel,
    FixedAssetModel,
)

logger = get_logger("modules.assets.service")

REVERSAL_REASON_MIN_LENGTH = 3


def _validate_period(fiscal_year: int, fiscal_month: int) -> None:
    if not 1 <= fiscal_month <= 12:
        raise ValidationError(
            f"Fiscal month must be between 1 and 12, got {fiscal_month}",
            field="fiscal_month",
        )


def _previous_period_end(fiscal_year: int, fiscal_month: int) -> date:
    if fiscal_month == 1:
        return period_end_date(fiscal_year - 1, 12)
    return period_end_date(fiscal_year, fiscal_month - 1)


def _parse_method(value: DepreciationMethod | str) -> DepreciationMethod:
    try:
        return DepreciationMethod(value)
    except ValueError as exc:
        raise ValidationError(
            f"Unknown depreciation method {value!r}", field="depreciation_method"
        ) from exc


class DepreciationService:
    """
    Fixed assets and depreciation runs.

    Contract:
        Returns frozen DTOs; never hands out ORM entities.

    Non-goals:
        - Does NOT post acquisitions or disposals to the ledger; the asset
          register tracks them, the ledger effect is booked manually.
    """

    def __init__(
        self,
        session: Session,
        config: LedgerConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._config = config or get_active_config()
        self._journal = JournalService(session, self._clock)

    # =========================================================================
    # Loading
    # =========================================================================

    def _category_by_code(self, code: str) -> AssetCategoryModel | None:
        return self._session.execute(
            select(AssetCategoryModel).where(AssetCategoryModel.code == code)
        ).scalar_one_or_none()

    def _asset(self, asset_id: UUID, for_update: bool = False) -> FixedAssetModel:
        stmt = select(FixedAssetModel).where(FixedAssetModel.id == asset_id)
        if for_update:
            stmt = stmt.with_for_update()
        asset = self._session.execute(stmt).scalar_one_or_none()
        if asset is None:
            raise NotFoundError("FixedAsset", str(asset_id))
        return asset

    def _run(self, run_id: UUID, for_update: bool = False) -> DepreciationRunModel:
        stmt = select(DepreciationRunModel).where(DepreciationRunModel.id == run_id)
        if for_update:
            stmt = stmt.with_for_update()
        run = self._session.execute(stmt).scalar_one_or_none()
        if run is None:
            raise NotFoundError("DepreciationRun", str(run_id))
        return run

    def _live_run(self, fiscal_year: int, fiscal_month: int) -> DepreciationRunModel | None:
        return self._session.execute(
            select(DepreciationRunModel)
            .where(
                DepreciationRunModel.fiscal_year == fiscal_year,
                DepreciationRunModel.fiscal_month == fiscal_month,
                DepreciationRunModel.status != DepreciationRunStatus.REVERSED.value,
            )
            .with_for_update()
        ).scalars().first()

    def _assets_for_update(self, asset_ids: list[UUID]) -> dict[UUID, FixedAssetModel]:
        rows = self._session.execute(
            select(FixedAssetModel)
            .where(FixedAssetModel.id.in_(asset_ids))
            .with_for_update()
        ).scalars().all()
        return {asset.id: asset for asset in rows}

    # =========================================================================
    # Categories and assets
    # =========================================================================

    def create_category(
        self,
        code: str,
        name: str,
        depreciation_method: DepreciationMethod | str,
        useful_life_months: int,
        asset_account_code: str,
        accumulated_depreciation_account_code: str,
        depreciation_expense_account_code: str,
        salvage_percent: Decimal | str = Decimal("0"),
        actor: str = "system",
    ) -> AssetCategoryInfo:
        """
        Create an asset category.

        Raises:
            ValidationError: Blank code, bad method/life/salvage percent,
                duplicate code, or the same account used for expense and
                accumulated depreciation.
            UnknownAccountError: A GL account is missing, inactive or a
                header account.
        """
        try:
            code = (code or "").strip()
            if not code:
                raise ValidationError("Category code is required", field="code")
            method = _parse_method(depreciation_method)
            if useful_life_months <= 0:
                raise ValidationError(
                    "Useful life must be a positive number of months",
                    field="useful_life_months",
                )
            percent = to_decimal(salvage_percent)
            if not Decimal("0") <= percent < Decimal("100"):
                raise ValidationError(
                    "Salvage percent must be in [0, 100)", field="salvage_percent"
                )
            if accumulated_depreciation_account_code == depreciation_expense_account_code:
                raise ValidationError(
                    "Expense and accumulated depreciation accounts must differ",
                    field="depreciation_expense_account_code",
                )
            for account_code in (
                asset_account_code,
                accumulated_depreciation_account_code,
                depreciation_expense_account_code,
            ):
                self._journal.accounts.require_postable(account_code=account_code)
            if self._category_by_code(code) is not None:
                raise ValidationError(f"Asset category {code} already exists", field="code")

            model = AssetCategoryModel(
                code=code,
                name=(name or code).strip(),
                depreciation_method=method,
                useful_life_months=useful_life_months,
                salvage_percent=percent,
                asset_account_code=asset_account_code,
                accumulated_depreciation_account_code=accumulated_depreciation_account_code,
                depreciation_expense_account_code=depreciation_expense_account_code,
                created_by=actor,
            )
            self._session.add(model)
            self._session.flush()
            info = AssetCategoryInfo.from_model(model)
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            raise ValidationError(f"Asset category {code} already exists", field="code") from exc
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "asset_category_created",
            extra={"category_id": str(info.id), "code": info.code, "actor_id": actor},
        )
        return info

    def get_category(self, code: str) -> AssetCategoryInfo:
        model = self._category_by_code(code)
        if model is None:
            raise NotFoundError("AssetCategory", code)
        return AssetCategoryInfo.from_model(model)

    def list_categories(self) -> list[AssetCategoryInfo]:
        rows = self._session.execute(
            select(AssetCategoryModel).order_by(AssetCategoryModel.code)
        ).scalars().all()
        return [AssetCategoryInfo.from_model(r) for r in rows]

    def register_asset(
        self,
        asset_number: str,
        name: str,
        category_code: str,
        acquisition_date: date,
        acquisition_cost: Decimal | str,
        salvage_value: Decimal | str | None = None,
        useful_life_months: int | None = None,
        depreciation_method: DepreciationMethod | str | None = None,
        depreciation_start_date: date | None = None,
        actor: str = "system",
    ) -> FixedAssetInfo:
        """
        Add an asset to the register.

        Salvage value, useful life and method default from the category;
        depreciation starts on the acquisition date unless given.

        Raises:
            NotFoundError: Unknown category.
            ValidationError: Non-positive cost, salvage outside [0, cost),
                bad life or method, duplicate asset number.
        """
        try:
            asset_number = (asset_number or "").strip()
            if not asset_number:
                raise ValidationError("Asset number is required", field="asset_number")
            category = self._category_by_code(category_code)
            if category is None:
                raise NotFoundError("AssetCategory", category_code)

            cost = to_decimal(acquisition_cost)
            if cost <= 0:
                raise ValidationError("Acquisition cost must be positive", field="acquisition_cost")
            if salvage_value is None:
                salvage = round_money(cost * category.salvage_percent / Decimal("100"))
            else:
                salvage = to_decimal(salvage_value)
            if not Decimal("0") <= salvage < cost:
                raise ValidationError(
                    "Salvage value must be at least zero and below cost", field="salvage_value"
                )
            life = useful_life_months if useful_life_months is not None else category.useful_life_months
            if life <= 0:
                raise ValidationError(
                    "Useful life must be a positive number of months",
                    field="useful_life_months",
                )
            method = _parse_method(depreciation_method or category.depreciation_method)
            start = depreciation_start_date or acquisition_date
            if start < acquisition_date:
                raise ValidationError(
                    "Depreciation cannot start before acquisition",
                    field="depreciation_start_date",
                )

            model = FixedAssetModel(
                asset_number=asset_number,
                name=(name or asset_number).strip(),
                category_id=category.id,
                acquisition_date=acquisition_date,
                acquisition_cost=cost,
                salvage_value=salvage,
                useful_life_months=life,
                depreciation_method=method,
                depreciation_start_date=start,
                accumulated_depreciation=Decimal("0"),
                book_value=cost,
                status=AssetStatus.ACTIVE,
                created_by=actor,
            )
            self._session.add(model)
            self._session.flush()
            info = FixedAssetInfo.from_model(model)
            self._session.commit()
        except IntegrityError as exc:
            self._session.rollback()
            raise ValidationError(
                f"Asset number {asset_number} already exists", field="asset_number"
            ) from exc
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "fixed_asset_registered",
            extra={
                "asset_id": str(info.id),
                "asset_number": info.asset_number,
                "acquisition_cost": str(info.acquisition_cost),
                "depreciation_method": info.depreciation_method,
                "actor_id": actor,
            },
        )
        return info

    def get_asset(self, asset_id: UUID) -> FixedAssetInfo:
        return FixedAssetInfo.from_model(self._asset(asset_id))

    def list_assets(self, status: AssetStatus | None = None) -> list[FixedAssetInfo]:
        stmt = select(FixedAssetModel).order_by(FixedAssetModel.asset_number)
        if status is not None:
            stmt = stmt.where(FixedAssetModel.status == enum_value(status))
        return [FixedAssetInfo.from_model(a) for a in self._session.execute(stmt).scalars()]

    def dispose_asset(self, asset_id: UUID, disposed_by: str) -> FixedAssetInfo:
        """Take an asset out of service; disposed assets are never depreciated."""
        try:
            asset = self._asset(asset_id, for_update=True)
            if enum_value(asset.status) == AssetStatus.DISPOSED.value:
                raise InvalidTransitionError(
                    "FixedAsset", str(asset.id), AssetStatus.DISPOSED.value, "dispose"
                )
            asset.status = AssetStatus.DISPOSED
            asset.updated_by = disposed_by
            self._session.flush()
            info = FixedAssetInfo.from_model(asset)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "fixed_asset_disposed",
            extra={"asset_id": str(asset_id), "book_value": str(info.book_value), "actor_id": disposed_by},
        )
        return info

    # =========================================================================
    # Schedule
    # =========================================================================

    def _schedule(self, fiscal_year: int, fiscal_month: int) -> tuple[list[ScheduleLineInfo], int]:
        period_end = period_end_date(fiscal_year, fiscal_month)
        assets = self._session.execute(
            select(FixedAssetModel)
            .where(
                FixedAssetModel.status == AssetStatus.ACTIVE.value,
                FixedAssetModel.depreciation_start_date <= period_end,
            )
            .order_by(FixedAssetModel.asset_number)
        ).scalars().all()

        factor = to_decimal(self._config.depreciation.declining_balance_factor)
        lines: list[ScheduleLineInfo] = []
        skipped = 0
        for asset in assets:
            if asset.last_depreciation_date is not None and asset.last_depreciation_date >= period_end:
                skipped += 1
                continue
            amount = calculate_period_depreciation(
                asset.depreciation_method,
                cost=asset.acquisition_cost,
                salvage_value=asset.salvage_value,
                useful_life_months=asset.useful_life_months,
                book_value=asset.book_value,
                accumulated_depreciation=asset.accumulated_depreciation,
                declining_balance_factor=factor,
            )
            if amount <= 0:
                skipped += 1
                continue
            category = asset.category
            lines.append(
                ScheduleLineInfo(
                    asset_id=asset.id,
                    asset_number=asset.asset_number,
                    depreciation_method=enum_value(asset.depreciation_method),
                    opening_book_value=asset.book_value,
                    depreciation_amount=amount,
                    closing_book_value=asset.book_value - amount,
                    accumulated_after=asset.accumulated_depreciation + amount,
                    expense_account_code=category.depreciation_expense_account_code,
                    accumulated_account_code=category.accumulated_depreciation_account_code,
                )
            )
        return lines, skipped

    def preview(self, fiscal_year: int, fiscal_month: int) -> DepreciationPreview:
        """Schedule lines for a period without persisting anything."""
        _validate_period(fiscal_year, fiscal_month)
        lines, skipped = self._schedule(fiscal_year, fiscal_month)
        return DepreciationPreview(
            fiscal_year=fiscal_year,
            fiscal_month=fiscal_month,
            lines=tuple(lines),
            skipped_count=skipped,
        )

    # =========================================================================
    # Run lifecycle
    # =========================================================================

    def calculate(self, fiscal_year: int, fiscal_month: int, calculated_by: str) -> DepreciationRunInfo:
        """
        Persist a CALCULATED run for the period.  No ledger effect.

        Raises:
            PeriodAlreadyCalculatedError: A Calculated or Posted run exists.
        """
        _validate_period(fiscal_year, fiscal_month)
        try:
            existing = self._live_run(fiscal_year, fiscal_month)
            if existing is not None:
                raise PeriodAlreadyCalculatedError(
                    fiscal_year, fiscal_month, str(existing.id), enum_value(existing.status)
                )

            lines, skipped = self._schedule(fiscal_year, fiscal_month)
            run = DepreciationRunModel(
                fiscal_year=fiscal_year,
                fiscal_month=fiscal_month,
                status=DepreciationRunStatus.CALCULATED,
                total_depreciation=sum((l.depreciation_amount for l in lines), Decimal("0")),
                asset_count=len(lines),
                skipped_count=skipped,
                calculated_at=self._clock.now(),
                calculated_by=calculated_by,
                created_by=calculated_by,
                lines=[
                    DepreciationScheduleLineModel(
                        asset_id=l.asset_id,
                        asset_number=l.asset_number,
                        depreciation_method=l.depreciation_method,
                        opening_book_value=l.opening_book_value,
                        depreciation_amount=l.depreciation_amount,
                        closing_book_value=l.closing_book_value,
                        accumulated_after=l.accumulated_after,
                        expense_account_code=l.expense_account_code,
                        accumulated_account_code=l.accumulated_account_code,
                        created_by=calculated_by,
                    )
                    for l in lines
                ],
            )
            self._session.add(run)
            self._session.flush()
            info = DepreciationRunInfo.from_model(run)
            self._session.commit()
        except IntegrityError as exc:
            # Lost a race with a concurrent calculate for the same period.
            self._session.rollback()
            winner = self._live_run(fiscal_year, fiscal_month)
            raise PeriodAlreadyCalculatedError(
                fiscal_year,
                fiscal_month,
                str(winner.id) if winner is not None else "unknown",
                enum_value(winner.status) if winner is not None else DepreciationRunStatus.CALCULATED.value,
            ) from exc
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "depreciation_run_calculated",
            extra={
                "run_id": str(info.id),
                "period": info.period_code,
                "asset_count": info.asset_count,
                "skipped_count": info.skipped_count,
                "total_depreciation": str(info.total_depreciation),
                "actor_id": calculated_by,
            },
        )
        return info

    def post(self, run_id: UUID, posted_by: str) -> DepreciationRunInfo:
        """
        Post a CALCULATED run as one journal entry dated the period's last
        day and apply the charges to the assets.

        Raises:
            InvalidTransitionError: Run is not CALCULATED.
            ValidationError: Run has no lines, or an asset changed after
                the run was calculated.
            PeriodClosedError: Period not OPEN.
        """
        try:
            run = self._run(run_id, for_update=True)
            if enum_value(run.status) != DepreciationRunStatus.CALCULATED.value:
                raise InvalidTransitionError(
                    "DepreciationRun", str(run.id), enum_value(run.status), "post"
                )
            if not run.lines:
                raise ValidationError(
                    f"Depreciation run {run.period_code} has nothing to post", field="lines"
                )

            period_end = period_end_date(run.fiscal_year, run.fiscal_month)
            assets = self._assets_for_update([l.asset_id for l in run.lines])
            for line in run.lines:
                asset = assets[line.asset_id]
                if (
                    enum_value(asset.status) != AssetStatus.ACTIVE.value
                    or asset.book_value != line.opening_book_value
                ):
                    raise ValidationError(
                        f"Asset {asset.asset_number} changed after run {run.period_code} "
                        f"was calculated; delete the run and recalculate",
                        field="lines",
                    )

            expense: dict[str, Decimal] = defaultdict(Decimal)
            accumulated: dict[str, Decimal] = defaultdict(Decimal)
            for line in run.lines:
                expense[line.expense_account_code] += line.depreciation_amount
                accumulated[line.accumulated_account_code] += line.depreciation_amount

            memo = f"Depreciation {run.period_code}"
            specs = [
                LineSpec.debit(code, amount, memo=memo) for code, amount in sorted(expense.items())
            ] + [
                LineSpec.credit(code, amount, memo=memo) for code, amount in sorted(accumulated.items())
            ]
            metadata = EntryMetadata(
                entry_date=period_end,
                description=f"Monthly depreciation for {run.period_code}",
                entry_type=JournalEntryType.SYSTEM,
                reference=f"DEP-{run.fiscal_year}{run.fiscal_month:02d}",
                source_service=self._config.depreciation.source_service,
                source_reference_id=str(run.id),
            )
            entry = self._journal.create_posted(specs, metadata, posted_by)

            for line in run.lines:
                asset = assets[line.asset_id]
                asset.accumulated_depreciation = line.accumulated_after
                asset.book_value = line.closing_book_value
                asset.last_depreciation_date = period_end
                if asset.book_value <= asset.salvage_value:
                    asset.status = AssetStatus.FULLY_DEPRECIATED
                asset.updated_by = posted_by

            run.status = DepreciationRunStatus.POSTED
            run.journal_entry_id = entry.id
            run.posted_at = self._clock.now()
            run.posted_by = posted_by
            run.updated_by = posted_by
            self._session.flush()
            info = DepreciationRunInfo.from_model(run)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info(
            "depreciation_run_posted",
            extra={
                "run_id": str(info.id),
                "period": info.period_code,
                "entry_id": str(info.journal_entry_id),
                "total_depreciation": str(info.total_depreciation),
                "actor_id": posted_by,
            },
        )
        return info

    def reverse(self, run_id: UUID, reason: str, reversed_by: str) -> DepreciationRunInfo:
        """
        Reverse a POSTED run: post a mirror entry in the run's period and
        roll the asset balances back.  Both entries stay in the ledger.

        Raises:
            InvalidTransitionError: Run is not POSTED.
            ValidationError: Reason too short, or a later run already
                depreciated one of the assets.
            PeriodClosedError: The run's period is not OPEN.
        """
        reason = (reason or "").strip()
        if len(reason) < REVERSAL_REASON_MIN_LENGTH:
            raise ValidationError(
                f"Reversal reason must be at least {REVERSAL_REASON_MIN_LENGTH} characters",
                field="reason",
            )
        try:
            run = self._run(run_id, for_update=True)
            if enum_value(run.status) != DepreciationRunStatus.POSTED.value:
                raise InvalidTransitionError(
                    "DepreciationRun", str(run.id), enum_value(run.status), "reverse"
                )

            period_end = period_end_date(run.fiscal_year, run.fiscal_month)
            assets = self._assets_for_update([l.asset_id for l in run.lines])
            for line in run.lines:
                asset = assets[line.asset_id]
                if asset.last_depreciation_date is not None and asset.last_depreciation_date > period_end:
                    raise ValidationError(
                        f"Asset {asset.asset_number} was depreciated after {run.period_code}; "
                        f"reverse the later run first",
                        field="run_id",
                    )

            reversal = self._journal.create_reversal(
                run.journal_entry_id,
                reversal_date=period_end,
                actor=reversed_by,
                description=f"Reversal of depreciation for {run.period_code}: {reason}",
                source_service=self._config.depreciation.source_service,
                source_reference_id=f"reverse-{run.id}",
            )

            previous_end = _previous_period_end(run.fiscal_year, run.fiscal_month)
            for line in run.lines:
                asset = assets[line.asset_id]
                asset.accumulated_depreciation -= line.depreciation_amount
                asset.book_value += line.depreciation_amount
                asset.last_depreciation_date = (
                    previous_end if asset.accumulated_depreciation > 0 else None
                )
                if enum_value(asset.status) == AssetStatus.FULLY_DEPRECIATED.value:
                    asset.status = AssetStatus.ACTIVE
                asset.updated_by = reversed_by

            run.status = DepreciationRunStatus.REVERSED
            run.reversal_journal_entry_id = reversal.id
            run.reversed_at = self._clock.now()
            run.reversed_by = reversed_by
            run.reversal_reason = reason
            run.updated_by = reversed_by
            self._session.flush()
            info = DepreciationRunInfo.from_model(run)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.warning(
            "depreciation_run_reversed",
            extra={
                "run_id": str(info.id),
                "period": info.period_code,
                "reversal_entry_id": str(info.reversal_journal_entry_id),
                "reason": reason,
                "actor_id": reversed_by,
            },
        )
        return info

    def delete_run(self, run_id: UUID) -> None:
        """Discard a CALCULATED run so the period can be recalculated."""
        try:
            run = self._run(run_id, for_update=True)
            if enum_value(run.status) != DepreciationRunStatus.CALCULATED.value:
                raise InvalidTransitionError(
                    "DepreciationRun", str(run.id), enum_value(run.status), "delete"
                )
            period = run.period_code
            self._session.delete(run)
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

        logger.info("depreciation_run_deleted", extra={"run_id": str(run_id), "period": period})

    def get_run(self, run_id: UUID) -> DepreciationRunInfo:
        return DepreciationRunInfo.from_model(self._run(run_id))

    def list_runs(self, fiscal_year: int | None = None) -> list[DepreciationRunInfo]:
        stmt = select(DepreciationRunModel).order_by(
            DepreciationRunModel.fiscal_year,
            DepreciationRunModel.fiscal_month,
            DepreciationRunModel.calculated_at,
        )
        if fiscal_year is not None:
            stmt = stmt.where(DepreciationRunModel.fiscal_year == fiscal_year)
        return [DepreciationRunInfo.from_model(r) for r in self._session.execute(stmt).scalars()]
