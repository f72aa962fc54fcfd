"""Utility script to populate demo data for local environments."""

from registrar.config import configure_logging
from registrar.db import init_db
from registrar.seed import ensure_demo_data


def main() -> None:
	"""Initialise the database schema and load deterministic demo data."""
	configure_logging()
	init_db()
	ensure_demo_data()


if __name__ == "__main__":
	main()
