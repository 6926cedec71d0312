"""Service layer: business logic, transactions and the pure lifecycle engines."""
