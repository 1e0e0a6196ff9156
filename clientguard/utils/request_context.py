"""Request metadata the security core records and binds sessions to"""
from dataclasses import dataclass
from typing import Optional

from flask import has_request_context, request


@dataclass(frozen=True)
class RequestContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls) -> 'RequestContext':
        """Build from the active Flask request, or an empty context outside one"""
        if not has_request_context():
            return cls()
        return cls(
            ip_address=request.remote_addr,
            user_agent=request.user_agent.string or None,
        )


def resolve_context(context: Optional[RequestContext]) -> RequestContext:
    return context if context is not None else RequestContext.from_request()
