pytest_plugins = [
    "tests.fixtures.storage_fixtures",
    "tests.fixtures.db_client",
    "tests.fixtures.api_fixtures",
]
