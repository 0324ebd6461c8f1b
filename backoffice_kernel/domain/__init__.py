"""Pure domain types: clock, workflow tables, DTOs."""
