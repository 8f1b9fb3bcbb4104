"""Wire models exchanged with the page-resident agent."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter


class AgentAction(str, Enum):
    SEARCH = "SEARCH"
    GET_RESULTS = "GET_RESULTS"
    SELECT_PRODUCT = "SELECT_PRODUCT"
    ADD_TO_CART = "ADD_TO_CART"
    BUY_NOW = "BUY_NOW"
    GET_PRODUCT_DETAILS = "GET_PRODUCT_DETAILS"
    GET_ORDER_DETAILS = "GET_ORDER_DETAILS"
    CHECK_LOGIN_STATUS = "CHECK_LOGIN_STATUS"
    APPLY_FILTERS = "APPLY_FILTERS"
    SORT_RESULTS = "SORT_RESULTS"
    TRACK_ORDER = "TRACK_ORDER"
    INITIATE_RETURN = "INITIATE_RETURN"
    CREATE_SUPPORT_TICKET = "CREATE_SUPPORT_TICKET"


# Actions with side effects on the storefront account.
MUTATING_ACTIONS = frozenset(
    {
        AgentAction.ADD_TO_CART,
        AgentAction.BUY_NOW,
        AgentAction.INITIATE_RETURN,
        AgentAction.CREATE_SUPPORT_TICKET,
    }
)


class AgentRequest(BaseModel):
    type: Literal["REQUEST"] = "REQUEST"
    request_id: str
    context_id: str
    action: AgentAction
    payload: dict[str, Any] = Field(default_factory=dict)


class OpenPage(BaseModel):
    type: Literal["OPEN_PAGE"] = "OPEN_PAGE"
    context_id: str
    url: str


class Navigate(BaseModel):
    type: Literal["NAVIGATE"] = "NAVIGATE"
    context_id: str
    url: str


class ClosePage(BaseModel):
    type: Literal["CLOSE_PAGE"] = "CLOSE_PAGE"
    context_id: str


class AgentResponse(BaseModel):
    type: Literal["RESPONSE"] = "RESPONSE"
    request_id: str
    success: bool
    data: Any = None
    error: str | None = None
    retryable: bool = False


class PageLoaded(BaseModel):
    """Unsolicited lifecycle event pushed by the agent after each navigation."""

    type: Literal["PAGE_LOADED"] = "PAGE_LOADED"
    context_id: str
    url: str
    event_id: str = Field(min_length=1)


OutboundMessage = Annotated[
    AgentRequest | OpenPage | Navigate | ClosePage, Field(discriminator="type")
]
InboundMessage = Annotated[AgentResponse | PageLoaded, Field(discriminator="type")]

inbound_adapter: TypeAdapter[AgentResponse | PageLoaded] = TypeAdapter(InboundMessage)
