import pytest

from kinformer._cogs.configs.configuration import InformerSettings
from kinformer.cli import CLIControls


def test_run_defaults(invoke, real_execute):
    result = invoke(['run'])

    assert result.exit_code == 0
    assert real_execute.called
    kwargs = real_execute.call_args.kwargs
    assert kwargs['client'] is None
    assert kwargs['kubeconfig'] is None
    assert kwargs['namespace'] == 'aerospike'
    assert kwargs['label'] == 'k8s-app=kube-dns'
    assert kwargs['settle_timeout'] == 10.0
    assert isinstance(kwargs['settings'], InformerSettings)


@pytest.mark.parametrize('options', [
    ['-n', 'ns1', '-l', 'a=b'],
    ['--namespace', 'ns1', '--label', 'a=b'],
])
def test_run_options(invoke, real_execute, options):
    result = invoke(['run'] + options + ['--kubeconfig', '/path/to/config', '--settle-timeout', '1.5'])

    assert result.exit_code == 0
    kwargs = real_execute.call_args.kwargs
    assert kwargs['kubeconfig'] == '/path/to/config'
    assert kwargs['namespace'] == 'ns1'
    assert kwargs['label'] == 'a=b'
    assert kwargs['settle_timeout'] == 1.5


def test_run_options_from_envvars(invoke, real_execute):
    result = invoke(['run'], env={'KINFORMER_RUN_NAMESPACE': 'ns1', 'KINFORMER_RUN_LABEL': 'a=b'})

    assert result.exit_code == 0
    kwargs = real_execute.call_args.kwargs
    assert kwargs['namespace'] == 'ns1'
    assert kwargs['label'] == 'a=b'


def test_timeouts_go_to_settings(invoke, real_execute):
    settings = InformerSettings()
    result = invoke(['run', '--request-timeout', '12', '--callback-timeout', '34'],
                    obj=CLIControls(settings=settings))

    assert result.exit_code == 0
    assert real_execute.call_args.kwargs['settings'] is settings
    assert settings.networking.request_timeout == 12.0
    assert settings.dispatching.callback_timeout == 34.0


def test_timeouts_are_kept_when_not_given(invoke, real_execute):
    settings = InformerSettings()
    settings.networking.request_timeout = 99
    settings.dispatching.callback_timeout = 88
    result = invoke(['run'], obj=CLIControls(settings=settings))

    assert result.exit_code == 0
    assert settings.networking.request_timeout == 99
    assert settings.dispatching.callback_timeout == 88


def test_watch_defaults(invoke, real_watch):
    result = invoke(['watch'])

    assert result.exit_code == 0
    kwargs = real_watch.call_args.kwargs
    assert kwargs['namespace'] is None
    assert kwargs['kubeconfig'] is None
    assert kwargs['stop_flag'] is None


def test_watch_in_a_namespace(invoke, real_watch):
    result = invoke(['watch', '-n', 'ns1'])

    assert result.exit_code == 0
    assert real_watch.call_args.kwargs['namespace'] == 'ns1'


def test_unknown_log_format(invoke, real_execute):
    result = invoke(['run', '--log-format', 'xml'])

    assert result.exit_code == 2
    assert not real_execute.called
