"""
Recognized inbound source shapes.
One model per source variant; the classifier validates a raw body against exactly
one of them based on the channel it arrived on.
"""
from typing import Annotated, Any, Dict, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator

from webhook_bridge.config import QUOTE_DEFAULTS


def _coerce_identifier(value: Any) -> Any:
    # ERP line numbers and vendor numbers arrive as either JSON numbers or strings.
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return str(int(value)) if float(value).is_integer() else str(value)
    if isinstance(value, str):
        return value.strip()
    return value


Identifier = Annotated[str, BeforeValidator(_coerce_identifier), Field(min_length=1)]


def _quote_default(name: str):
    def _apply(value: Any) -> Any:
        return QUOTE_DEFAULTS[name] if value is None else value
    return _apply


class ErpChangeEvent(BaseModel):
    """ERP record-change webhook: ``{"table": ..., "action": ..., "data": {...}}``."""
    model_config = ConfigDict(extra="allow")

    table: str = Field(min_length=1, description="Source table, e.g. 'Item'")
    action: str = Field(min_length=1, description="insert / update / delete")
    data: Dict[str, Any] = Field(description="Changed record, keyed by ERP field names")


class MailNotificationRecord(BaseModel):
    """One entry of a mail-platform ``value`` notification array."""
    model_config = ConfigDict(extra="allow")

    changeType: str = Field(min_length=1)
    resource: str = Field(min_length=1)
    resourceData: Optional[Dict[str, Any]] = None


class QuoteIngestionEvent(BaseModel):
    """Quote produced from an email reply, to be attached to an opportunity."""
    model_config = ConfigDict(extra="allow")

    quoteNumber: Identifier
    opportunityId: Identifier
    convertToOrder: Annotated[bool, BeforeValidator(_quote_default("convert_to_order"))] = Field(default_factory=lambda: bool(QUOTE_DEFAULTS["convert_to_order"]))
    validityDays: Annotated[int, BeforeValidator(_quote_default("validity_days"))] = Field(default_factory=lambda: int(QUOTE_DEFAULTS["validity_days"]), ge=0)


class VendorQuoteApprovalEvent(BaseModel):
    """Approval of one vendor's quote for one RFQ line."""
    model_config = ConfigDict(extra="allow")

    mpRfqId: Identifier
    rfqLineNo: Identifier
    vendorNo: Identifier
    systemId: Identifier
    unitPrice: Optional[float] = None
    quantity: Optional[float] = None
    lineAmount: Optional[float] = None
    currencyCode: Optional[str] = None

    @model_validator(mode="after")
    def _derive_line_amount(self) -> "VendorQuoteApprovalEvent":
        if self.lineAmount is None and self.unitPrice is not None and self.quantity is not None:
            self.lineAmount = self.unitPrice * self.quantity
        return self


def required_fields(model: type[BaseModel]) -> list[str]:
    return [name for name, info in model.model_fields.items() if info.is_required()]


__all__ = [
    "ErpChangeEvent",
    "MailNotificationRecord",
    "QuoteIngestionEvent",
    "VendorQuoteApprovalEvent",
    "required_fields",
]
