# Kanban board client: query cache, optimistic updates and push reconciliation
#
# Components:
#   schema.py     - Data model (Board, Column, Task, Label, Invite, BoardEvent)
#   ordering.py   - Dense position bookkeeping for columns and tasks
#   api.py        - REST client, one method per endpoint
#   auth.py       - Access-token providers
#   cache.py      - Query cache with observers, invalidation and fetch cancellation
#   optimistic.py - Optimistic move/favorite mutations with rollback
#   reconcile.py  - Single decision point for push events and local settles
#   channel.py    - SSE push channel, reconnect backoff, per-board hub
#   session.py    - Wires the above together for one signed-in user
#   filters.py    - Task filtering by assignee, priority, label and due date
#   activity.py   - Activity descriptions and comment/activity feed
#   config.py     - YAML + environment configuration
#   cli.py        - `boardsync` command line entry point

__version__ = "0.1.0"
