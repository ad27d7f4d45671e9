"""Turn transport results into awaitable values with a single error path.

A transport call resolves to either a TransportResponse or a TransportFailure.
settle() awaits the call and either returns the response body or raises the
classified ForgeError, so capability operations compose with plain `await`,
asyncio.gather and tasks.
"""

from collections.abc import Awaitable
from typing import Any

from forgereview.clients.transport import TransportResponse, TransportResult
from forgereview.utils.errors import DiagnosticLog, classify_and_record


def resolve(result: TransportResult, origin: str, diagnostics: DiagnosticLog | None) -> Any:
    """Return the body of a successful result, or raise its classified error.

    Args:
        result: The settled transport result
        origin: Operation name recorded with any failure (e.g. "set-labels")
        diagnostics: Sink that receives a record for every classified failure
    """
    if isinstance(result, TransportResponse):
        return result.body
    raise classify_and_record(result, origin, diagnostics)


async def settle(
    call: Awaitable[TransportResult], origin: str, diagnostics: DiagnosticLog | None
) -> Any:
    """Await a transport call and resolve it."""
    return resolve(await call, origin, diagnostics)
