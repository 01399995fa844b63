"""FFN swimming performances -> SQLite -> club records per pool, sex, age and event."""
