"""Data model: transactions, queries, conversation messages and tool arguments."""

from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from datetime import date, datetime
from typing import Any, ClassVar

from .errors import UnsupportedGroupByError, ValidationError
from .periods import parse_date


GROUP_BY = ("category", "merchant", "day")
GRANULARITIES = ("day", "week", "month")
SCOPES = ("overall", "category", "merchant")
DIMENSIONS = ("merchant", "category")
DIRECTIONS = ("top", "bottom")
ORDER_BY = ("date", "amount", "name")

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"


@dataclass(frozen=True)
class Transaction:
    """A synced bank transaction. Positive amounts are money leaving the account."""

    transaction_id: str
    bank_id: str
    name: str
    amount: float
    currency: str
    date: str
    pending: bool = False
    authorized_date: str | None = None
    pfc_primary: str | None = None
    pfc_detailed: str | None = None
    pfc_confidence: str | None = None
    pfc_icon_url: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "transactionId": self.transaction_id,
            "bankId": self.bank_id,
            "name": self.name,
            "amount": self.amount,
            "currency": self.currency,
            "pending": self.pending,
            "date": self.date,
        }
        optional = {
            "authorizedDate": self.authorized_date,
            "pfcPrimary": self.pfc_primary,
            "pfcDetailed": self.pfc_detailed,
            "pfcConfidence": self.pfc_confidence,
            "pfcIconUrl": self.pfc_icon_url,
        }
        out.update({k: v for k, v in optional.items() if v})
        return out


@dataclass(frozen=True)
class TransactionQuery:
    """Filter over a user's transactions. Date bounds are inclusive; limit 0 is unbounded."""

    pending: bool | None = None
    category: str | None = None
    bank_id: str | None = None
    merchant: str | None = None
    date_from: str | None = None
    date_to: str | None = None
    order_by: str = ""
    desc: bool = False
    limit: int = 0


@dataclass(frozen=True)
class ConversationMessage:
    """One persisted entry of an assistant session."""

    role: str
    content: str = ""
    tool_name: str | None = None
    tool_args: dict[str, Any] | None = None
    tool_result: dict[str, Any] | None = None
    created_at: datetime | None = None
    expires_at: datetime | None = None

    @classmethod
    def user(cls, text: str) -> "ConversationMessage":
        return cls(role=ROLE_USER, content=text)

    @classmethod
    def assistant(cls, text: str) -> "ConversationMessage":
        return cls(role=ROLE_ASSISTANT, content=text)

    @classmethod
    def tool(cls, name: str, args: dict[str, Any], result: dict[str, Any]) -> "ConversationMessage":
        return cls(role=ROLE_TOOL, tool_name=name, tool_args=args, tool_result=result)

    def to_dict(self) -> dict[str, Any]:
        """Persisted shape; empty optional fields are omitted."""
        out: dict[str, Any] = {"role": self.role}
        if self.content:
            out["content"] = self.content
        if self.tool_name:
            out["toolName"] = self.tool_name
        if self.tool_args is not None:
            out["toolArgs"] = self.tool_args
        if self.tool_result is not None:
            out["toolResult"] = self.tool_result
        if self.created_at is not None:
            out["createdAt"] = self.created_at.isoformat()
        if self.expires_at is not None:
            out["expiresAt"] = self.expires_at.isoformat()
        return out


# ============================================================================
# Tool arguments
# ============================================================================

def _arg(wire: str, kind: str, default: Any = None) -> Any:
    return field(default=default, metadata={"wire": wire, "kind": kind})


def _coerce(value: Any, kind: str, key: str) -> Any:
    if kind == "bool":
        if isinstance(value, bool):
            return value
    elif kind == "int":
        if isinstance(value, bool):
            pass
        elif isinstance(value, int):
            return value
        elif isinstance(value, float) and value.is_integer():
            # JSON numbers from the model often arrive as floats
            return int(value)
    elif isinstance(value, str):
        value = value.strip()
        return value or None
    raise ValidationError(f"{key} must be of type {kind}, got {type(value).__name__}")


class ToolArgs:
    """Shared decoding, defaulting and validation for typed tool arguments.

    Subclasses are frozen dataclasses whose fields carry their wire (camelCase)
    name and primitive kind in field metadata.
    """

    ranges: ClassVar[tuple[tuple[str, str], ...]] = (("date_from", "date_to"),)
    required: ClassVar[tuple[str, ...]] = ()

    @classmethod
    def from_args(cls, args: Mapping[str, Any] | None) -> "ToolArgs":
        """Decode a JSON-like argument map. Unknown keys are ignored."""
        values: dict[str, Any] = {}
        for f in fields(cls):
            key = f.metadata["wire"]
            if not args or args.get(key) is None:
                continue
            coerced = _coerce(args[key], f.metadata["kind"], key)
            if coerced is not None:
                values[f.name] = coerced
        return cls(**values)

    def with_defaults(self, today: date) -> "ToolArgs":
        """Return a copy with pending=False and a resolved date range.

        Both bounds missing resolves to month-to-date. A lone date_from runs to
        today; a lone date_to starts on the first day of its month.
        """
        changes: dict[str, Any] = {}
        if getattr(self, "pending", False) is None:
            changes["pending"] = False

        if "date_from" in self._field_names():
            start, end = self.date_from, self.date_to
            if not start and not end:
                start, end = today.replace(day=1).isoformat(), today.isoformat()
            elif not end:
                end = today.isoformat()
            elif not start:
                start = parse_date(end, "dateTo").replace(day=1).isoformat()
            changes["date_from"], changes["date_to"] = start, end

        return replace(self, **changes) if changes else self

    def validate(self) -> None:
        """Check required fields, date formats and range ordering."""
        for name in self.required:
            if not getattr(self, name):
                raise ValidationError(f"{self._wire(name)} is required")

        for f in fields(self):
            value = getattr(self, f.name)
            if f.metadata["kind"] == "date" and value:
                parse_date(value, f.metadata["wire"])

        for start_name, end_name in self.ranges:
            start, end = getattr(self, start_name), getattr(self, end_name)
            if start and end and start > end:
                raise ValidationError(
                    f"{self._wire(start_name)} ({start}) must not be after {self._wire(end_name)} ({end})"
                )

    def to_query(self, **overrides: Any) -> TransactionQuery:
        """Build the store filter shared by the aggregation tools."""
        values = {
            "pending": getattr(self, "pending", None),
            "category": getattr(self, "category", None),
            "bank_id": getattr(self, "bank_id", None),
            "merchant": getattr(self, "merchant", None),
            "date_from": getattr(self, "date_from", None),
            "date_to": getattr(self, "date_to", None),
        }
        values.update(overrides)
        return TransactionQuery(**values)

    @classmethod
    def _field_names(cls) -> set[str]:
        return {f.name for f in fields(cls)}

    @classmethod
    def _wire(cls, name: str) -> str:
        for f in fields(cls):
            if f.name == name:
                return f.metadata["wire"]
        return name


def _check_enum(value: str | None, allowed: tuple[str, ...], wire: str) -> None:
    if value not in allowed:
        raise ValidationError(f"{wire} must be one of {', '.join(allowed)}, got {value!r}")


@dataclass(frozen=True)
class SpendTotalArgs(ToolArgs):
    pending: bool | None = _arg("pending", "bool")
    category: str | None = _arg("category", "str")
    bank_id: str | None = _arg("bankId", "str")
    merchant: str | None = _arg("merchant", "str")
    date_from: str | None = _arg("dateFrom", "date")
    date_to: str | None = _arg("dateTo", "date")


@dataclass(frozen=True)
class SpendBreakdownArgs(ToolArgs):
    group_by: str | None = _arg("groupBy", "str")
    pending: bool | None = _arg("pending", "bool")
    category: str | None = _arg("category", "str")
    bank_id: str | None = _arg("bankId", "str")
    merchant: str | None = _arg("merchant", "str")
    date_from: str | None = _arg("dateFrom", "date")
    date_to: str | None = _arg("dateTo", "date")

    def validate(self) -> None:
        if self.group_by not in GROUP_BY:
            raise UnsupportedGroupByError(self.group_by)
        super().validate()


@dataclass(frozen=True)
class TransactionsArgs(ToolArgs):
    pending: bool | None = _arg("pending", "bool")
    category: str | None = _arg("category", "str")
    bank_id: str | None = _arg("bankId", "str")
    merchant: str | None = _arg("merchant", "str")
    date_from: str | None = _arg("dateFrom", "date")
    date_to: str | None = _arg("dateTo", "date")
    order_by: str | None = _arg("orderBy", "str")
    desc: bool | None = _arg("desc", "bool")
    limit: int | None = _arg("limit", "int")

    def with_defaults(self, today: date) -> "TransactionsArgs":
        args = super().with_defaults(today)
        return replace(args, order_by=args.order_by or "date", desc=bool(args.desc), limit=args.limit or 25)

    def validate(self) -> None:
        super().validate()
        if self.order_by:
            _check_enum(self.order_by, ORDER_BY, "orderBy")
        if self.limit is not None and self.limit < 0:
            raise ValidationError("limit must not be negative")


@dataclass(frozen=True)
class PeriodComparisonArgs(ToolArgs):
    current_from: str | None = _arg("currentFrom", "date")
    current_to: str | None = _arg("currentTo", "date")
    previous_from: str | None = _arg("previousFrom", "date")
    previous_to: str | None = _arg("previousTo", "date")
    group_by: str | None = _arg("groupBy", "str")
    pending: bool | None = _arg("pending", "bool")
    category: str | None = _arg("category", "str")
    bank_id: str | None = _arg("bankId", "str")
    merchant: str | None = _arg("merchant", "str")

    ranges = (("current_from", "current_to"), ("previous_from", "previous_to"))
    required = ("current_from", "current_to", "previous_from", "previous_to")

    def validate(self) -> None:
        if self.group_by is not None and self.group_by not in GROUP_BY:
            raise UnsupportedGroupByError(self.group_by)
        super().validate()


@dataclass(frozen=True)
class RecurringArgs(ToolArgs):
    date_from: str | None = _arg("dateFrom", "date")
    date_to: str | None = _arg("dateTo", "date")
    bank_id: str | None = _arg("bankId", "str")

    required = ("date_from", "date_to")


@dataclass(frozen=True)
class MovingAverageArgs(ToolArgs):
    date_from: str | None = _arg("dateFrom", "date")
    date_to: str | None = _arg("dateTo", "date")
    granularity: str = _arg("granularity", "str", "day")
    scope: str = _arg("scope", "str", "overall")
    pending: bool | None = _arg("pending", "bool")
    category: str | None = _arg("category", "str")
    merchant: str | None = _arg("merchant", "str")
    bank_id: str | None = _arg("bankId", "str")

    required = ("date_from", "date_to")

    def validate(self) -> None:
        _check_enum(self.granularity, GRANULARITIES, "granularity")
        _check_enum(self.scope, SCOPES, "scope")
        super().validate()


@dataclass(frozen=True)
class TopNArgs(ToolArgs):
    dimension: str | None = _arg("dimension", "str")
    date_from: str | None = _arg("dateFrom", "date")
    date_to: str | None = _arg("dateTo", "date")
    direction: str = _arg("direction", "str", "top")
    limit: int = _arg("limit", "int", 10)
    min_count: int = _arg("minCount", "int", 1)
    pending: bool | None = _arg("pending", "bool")
    category: str | None = _arg("category", "str")
    bank_id: str | None = _arg("bankId", "str")

    required = ("dimension", "date_from", "date_to")

    def with_defaults(self, today: date) -> "TopNArgs":
        """Zero or negative limit and minCount mean "not given"."""
        args = super().with_defaults(today)
        return replace(
            args,
            limit=args.limit if args.limit > 0 else 10,
            min_count=args.min_count if args.min_count > 0 else 1,
        )

    def validate(self) -> None:
        _check_enum(self.dimension, DIMENSIONS, "dimension")
        _check_enum(self.direction, DIRECTIONS, "direction")
        if self.limit < 1:
            raise ValidationError("limit must be at least 1")
        if self.min_count < 1:
            raise ValidationError("minCount must be at least 1")
        super().validate()
