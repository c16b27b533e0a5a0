def pytest_configure(config):
    config.addinivalue_line("markers", "integration_test: end-to-end run over shard directories built in tmpdir")
