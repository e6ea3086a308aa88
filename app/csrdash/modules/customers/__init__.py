"""
Customers module.

Scope:
- Customer list + fuzzy search
- Customer detail tabs (overview, subscriptions, requests, purchases)
- Profile edit (name, contact, address) with field validation
- Logging a new request on a customer's behalf
"""
