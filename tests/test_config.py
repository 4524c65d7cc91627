"""
Tests for configuration loading and daemon wiring.
"""


class TestLoadConfig:

    def test_defaults_without_file(self):
        from rally_sync.main import load_config

        config = load_config(None)

        assert config['web']['port'] == 3001
        assert config['countdown']['warmup_seconds'] == 10.0
        assert [p['key'] for p in config['phases']] == ['main', 'counter', 'counter_counter']

    def test_missing_file_uses_defaults(self, tmp_path):
        from rally_sync.main import load_config

        config = load_config(str(tmp_path / 'absent.toml'))

        assert config['web']['port'] == 3001

    def test_toml_overrides_merge(self, tmp_path):
        from rally_sync.main import load_config

        path = tmp_path / 'config.toml'
        path.write_text(
            '[web]\n'
            'port = 8080\n'
            'access_code = "sesame"\n'
            '\n'
            '[countdown]\n'
            'warmup_seconds = 5.0\n'
            '\n'
            '[[phases]]\n'
            'key = "main"\n'
            'title = "Main"\n'
            '\n'
            '[[phases]]\n'
            'key = "ghost"\n'
            'title = "Ghost"\n'
        )

        config = load_config(str(path))

        assert config['web']['port'] == 8080
        assert config['web']['access_code'] == 'sesame'
        # Untouched keys in a merged table keep their defaults
        assert config['web']['heartbeat_interval'] == 15.0
        assert config['countdown']['supervisor_interval'] == 0.5
        assert [p['key'] for p in config['phases']] == ['main', 'ghost']

    def test_defaults_are_not_shared(self):
        from rally_sync.main import DEFAULT_CONFIG, load_config

        config = load_config(None)
        config['web']['port'] = 1

        assert DEFAULT_CONFIG['web']['port'] == 3001


class TestSyncDaemon:

    def test_daemon_wires_configured_phases(self, tmp_path):
        from rally_sync.main import SyncDaemon, load_config

        config = load_config(None)
        config['phases'] = [{'key': 'main'}, {'key': 'counter'}]
        config['countdown']['warmup_seconds'] = 4.0

        daemon = SyncDaemon(config, store_path=str(tmp_path / 'roster.json'))

        assert daemon.store.phase_keys == ['main', 'counter']
        assert daemon.coordinator.warmup == 4.0
        assert daemon.coordinator.get_state().status.value == 'idle'
