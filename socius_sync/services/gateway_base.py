"""
Socius Sync — Abstract Remote Gateway
=======================================

What:  The contract SyncEngine requires of the remote store of a collection.
How:   Concrete gateways implement create/list/update/delete keyed by the
       client-generated identifier. HttpRemoteGateway talks to the REST API;
       tests substitute AsyncMock instances or run the reference server
       in-process.
Who:   Called only by SyncEngine, from initialize() and from background
       push tasks.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List


class RemoteGateway(ABC):
    """
    Remote store of one collection.

    Contract:
        - create() is idempotent on body["client_id"]: repeating it with the
          same id never produces a second remote record
        - list() returns the authoritative snapshot of the collection
        - delete() of an id the remote does not know is not an error
        - every failure is raised as RemoteGatewayError (or a subclass);
          gateways never retry on the engine's behalf beyond their own
          transport policy
    """

    @abstractmethod
    async def create(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """
        Store a record under body["client_id"] and return the stored record.

        Raises:
            RemoteGatewayError: the remote rejected the call or is unreachable
        """
        ...

    @abstractmethod
    async def list(self) -> List[Dict[str, Any]]:
        """
        Return every record of the collection as wire dicts with `client_id`.

        Raises:
            RemoteGatewayError: the remote is unreachable or answered with
                something other than a JSON array
        """
        ...

    @abstractmethod
    async def update(self, record_id: str, patch: Dict[str, Any]) -> Dict[str, Any]:
        """
        Apply `patch` to the remote record `record_id`.

        Raises:
            RemoteNotFoundError: the remote has no record with that id
            RemoteGatewayError: any other failure
        """
        ...

    @abstractmethod
    async def delete(self, record_id: str) -> None:
        """Remove the remote record; an unknown id counts as success."""
        ...

    async def health_check(self) -> bool:
        """True when the remote is reachable. Never raises."""
        return True
