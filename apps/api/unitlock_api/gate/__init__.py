"""Gate access: authorization engine and hardware actuator."""
