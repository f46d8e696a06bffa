"""
Domain Layer

Bounded contexts:
- core/: Shared kernel with exceptions and common types
- machine/: Machine bounded context
- deployment/: Deployment bounded context
- provider/: Provider account and credential bounded context
- audit/: Audit trail
"""
