"""Utility script to populate demo data for local environments."""

from blogcms.db import init_db
from blogcms.seed import ensure_demo_data


def main() -> None:
	"""Initialise the database schema and load the demo admin, reader and post."""
	init_db()
	ensure_demo_data()


if __name__ == "__main__":
	main()
