"""
Broadcast core — everything between the snapshot sources and the sockets.

  hub.py       — BroadcastHub: registry of live sessions, non-blocking fan-out
  session.py   — ClientSession + its bounded OutboundQueue and writer task
  poller.py    — fixed-interval task runner + SnapshotPublisher tick task
  handler.py   — aiohttp WebSocket route: register, read, dispatch, teardown
  commands.py  — allowlisted command dispatch + process executor
  messages.py  — wire envelope (ServerMessage) and inbound ClientCommand
  artwork.py   — artwork fetch, re-encode and data-URI cache
  config.py    — JSON config loader (cfg)
  watchdog.py  — systemd notify heartbeat
"""
