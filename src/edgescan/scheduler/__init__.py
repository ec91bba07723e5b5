"""Process entry point and run cadence."""
