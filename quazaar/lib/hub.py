# Quazaar
# Copyright (C) 2024-2026 Markus Kirsten
# SPDX-License-Identifier: GPL-3.0-or-later
#
# Attribution required — see LICENSE, Section 7(b).

"""
BroadcastHub — the registry of live client sessions.

Every published message goes to every registered session's own queue.  A
session whose queue is full loses that one message (logged); nobody else is
affected and ``broadcast()`` never waits.

None of the methods await, so on the event loop each one runs to completion
without interleaving with any other coroutine: register/unregister can never
observe a half-finished broadcast and vice versa.  Broadcast walks a snapshot
of the registry all the same, so a session's writer or teardown may mutate
the dict while the loop is offering.

The connection handler unregisters a session as soon as its writer task
ends (a failed write included), without waiting for the reader loop to
notice the closed socket.  No registered session has a dead writer.
"""

import logging

from .messages import ServerMessage
from .session import ClientSession

log = logging.getLogger(__name__)


class BroadcastHub:

    def __init__(self):
        self._sessions: dict[str, ClientSession] = {}
        self.broadcasts = 0
        self.drops = 0

    def register(self, session: ClientSession):
        if session.id in self._sessions:
            raise ValueError(f"session id already registered: {session.id}")
        self._sessions[session.id] = session
        log.info("Client registered: %s (%d total)", session.id, len(self._sessions))

    def unregister(self, session_id: str) -> bool:
        """Remove a session and close its queue.  No-op for unknown ids."""
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.outbound.close()
        log.info("Client unregistered: %s (%d remaining)", session_id, len(self._sessions))
        return True

    def broadcast(self, message: ServerMessage) -> int:
        """Offer *message* to every session.  Returns how many accepted it."""
        sessions = list(self._sessions.values())
        if not sessions:
            log.debug("No clients connected, %s not sent", message.status.value)
            return 0

        self.broadcasts += 1
        delivered = 0
        for session in sessions:
            if session.outbound.offer(message):
                delivered += 1
            else:
                session.dropped += 1
                self.drops += 1
                log.warning("Client %s queue full (%d), dropping %s",
                            session.id, session.outbound.maxsize, message.status.value)
        log.debug("Broadcast %s to %d/%d clients",
                  message.status.value, delivered, len(sessions))
        return delivered

    def count(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> ClientSession | None:
        return self._sessions.get(session_id)

    def sessions(self) -> list[ClientSession]:
        return list(self._sessions.values())

    def close_all(self) -> int:
        """Unregister every session (process shutdown)."""
        ids = list(self._sessions)
        for session_id in ids:
            self.unregister(session_id)
        return len(ids)

    def __contains__(self, session_id: str):
        return session_id in self._sessions

    def __len__(self):
        return len(self._sessions)
