"""
Request models for the returns API.

Field names follow the stored document names (camelCase) so request
bodies can be handed to the processor as-is.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class ReturnItemRequest(BaseModel):
    """One requested return line, addressed by lineIndex or productId."""
    productId: Optional[str] = None
    lineIndex: Optional[int] = None
    returnQuantity: int
    returnReason: Optional[str] = None


class CreateReturnRequest(BaseModel):
    """
    Return creation request.

    Prices, totals and returnType are always derived from the stored
    sale; any values sent by the client for them are ignored.
    """
    originalSaleId: Optional[str] = None
    originalInvoiceNumber: Optional[str] = None
    items: List[ReturnItemRequest] = Field(default_factory=list)
    returnReason: Optional[str] = None
    returnType: Optional[str] = None
    refundMethod: Optional[str] = None
    notes: Optional[str] = None
    customer: Optional[Dict[str, Any]] = None

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True, exclude={"returnType", "customer"})


class UpdateStatusRequest(BaseModel):
    """Status change request (approve or reject)."""
    status: str
    notes: Optional[str] = None


class WorkflowSearchRequest(BaseModel):
    invoiceNumber: str = ""


class WorkflowItemRequest(BaseModel):
    """Set a line's return quantity; 0 removes it from the return."""
    lineIndex: int
    returnQuantity: int = 0
    returnReason: Optional[str] = None


class WorkflowConfirmRequest(BaseModel):
    returnReason: str = ""
    refundMethod: Optional[str] = None
    notes: str = ""
