"""Fleetd: control-plane registry for supervised agent fleets.

Server-side components for tracking remote agents and the devices they
supervise:
  - Identity: binary instance ids ⇄ canonical string identities
  - Catalog: baseline configuration for first-seen devices
  - Registry: in-memory agent/device store and reconciliation
  - Delivery: validated config pushes through a device's supervisor
  - Events: transport callbacks (connect, report, disconnect)
"""

__version__ = "0.1.0"
