"""
Vehicle Subscriptions module.

Scope:
- Subscription detail tabs (overview, vehicles, locations, billing)
- Status changes (active / paused / cancelled) with timestamp side effects
- Vehicle add/remove under the plan's vehicle cap
- Modify plan, transfer owner, create, delete

Billing is display + proration only; no charges are made here.
"""
