"""
                        Services Module

Contains all business logic services with the hybrid architecture pattern.
Infrastructure services have a development and a production implementation,
selected by ENV_MODE.

Services:
    - persistence: In-memory or SQL document store
    - notifications: Mock or Twilio/SendGrid customer messages
    - orders: State machine, order service, auto-accept countdown
    - rewards: Loyalty ledger
    - ratings: Ratings and moderation
    - applications: Restaurant and rider applications
"""
