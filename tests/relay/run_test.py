from __future__ import annotations

import asyncio
import logging
import multiprocessing
import os
import pathlib
import subprocess
import time
from unittest import mock
from unittest.mock import AsyncMock

import click.testing
import pytest
import websockets

from peerlink.relay.config import RelayServingConfig
from peerlink.relay.run import cli
from peerlink.relay.run import periodic_peer_logger
from peerlink.relay.run import serve
from peerlink.relay.server import RelayServer
from peerlink.utils.tasks import cancel_background_task
from testing.relay_server import mock_websocket
from testing.relay_server import PeerClient
from testing.utils import open_port


@pytest.mark.asyncio()
async def test_periodic_peer_logger(caplog) -> None:
    caplog.set_level(logging.INFO)

    server = RelayServer()
    peer_id = server.registry.register(mock_websocket(), '10.0.0.1:1')
    server.registry.set_alias(peer_id, 'alice')

    task = periodic_peer_logger(server, 0.001)
    assert task.get_name() == 'relay-server-peer-logger'
    await asyncio.sleep(0.01)
    await cancel_background_task(task)

    assert any(
        [
            'Connected peers: 1' in record.message
            and record.levelname == 'INFO'
            for record in caplog.records
        ],
    )
    assert any(
        [
            peer_id in record.message and 'alice' in record.message
            for record in caplog.records
        ],
    )


@pytest.mark.asyncio()
async def test_periodic_peer_logger_limit(caplog) -> None:
    caplog.set_level(logging.DEBUG)

    server = RelayServer()
    peer_id = server.registry.register(mock_websocket(), '10.0.0.1:1')

    task = periodic_peer_logger(server, 0.001, limit=1, level=logging.DEBUG)
    await asyncio.sleep(0.01)
    await cancel_background_task(task)

    records = [r for r in caplog.records if 'Connected peers' in r.message]
    assert len(records) > 0
    assert all(record.levelname == 'DEBUG' for record in records)
    assert not any(peer_id in record.message for record in records)


def test_invoke() -> None:
    runner = click.testing.CliRunner()
    with mock.patch(
        'peerlink.relay.run.serve',
        AsyncMock(),
    ) as mock_serve:
        runner.invoke(cli)
        mock_serve.assert_awaited_once()

    assert isinstance(mock_serve.await_args.args[0], RelayServingConfig)


def test_invoke_and_override_defaults(tmp_path: pathlib.Path) -> None:
    tmp_dir = os.path.join(tmp_path, 'log-dir')
    assert not os.path.isdir(tmp_dir)

    async def _mock_serve(config: RelayServingConfig) -> None:
        assert config.host == 'test-host'
        assert config.port == 1234
        assert config.logging.log_dir == str(tmp_dir)
        assert config.logging.default_level == logging.WARNING

    options: list[str] = []
    options += ['--host', 'test-host']
    options += ['--port', '1234']
    options += ['--log-dir', str(tmp_dir)]
    options += ['--log-level', 'warning']

    runner = click.testing.CliRunner()
    with mock.patch(
        'peerlink.relay.run.serve',
        AsyncMock(side_effect=_mock_serve),
    ) as mock_serve:
        result = runner.invoke(cli, options)

    assert result.exit_code == 0
    mock_serve.assert_awaited_once()
    assert os.path.isdir(tmp_dir)


def test_invoke_port_from_environment() -> None:
    runner = click.testing.CliRunner()
    with mock.patch(
        'peerlink.relay.run.serve',
        AsyncMock(),
    ) as mock_serve:
        runner.invoke(cli, env={'PORT': '4321'})

    assert mock_serve.await_args.args[0].port == 4321


def test_invoke_with_config_file(tmp_path: pathlib.Path) -> None:
    filepath = tmp_path / 'relay.toml'
    filepath.write_text('port = 4000\n\n[sweep]\ntimeout = 10\n')

    runner = click.testing.CliRunner()
    with mock.patch(
        'peerlink.relay.run.serve',
        AsyncMock(),
    ) as mock_serve:
        runner.invoke(cli, ['--config', str(filepath)])

    config = mock_serve.await_args.args[0]
    assert config.port == 4000
    assert config.sweep.timeout == 10


def test_logging_config(tmp_path: pathlib.Path) -> None:
    with subprocess.Popen(
        [
            'peerlink-relay',
            '--port',
            str(open_port()),
            '--log-dir',
            str(tmp_path),
            '--log-level',
            'INFO',
        ],
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        universal_newlines=True,
    ) as server_handle:
        # Wait for server to log that it is listening
        assert server_handle.stdout is not None
        for line in server_handle.stdout:  # pragma: no cover
            if 'Relay server listening on' in line:
                break

        server_handle.terminate()
        server_handle.wait(1)

    sleep_time = 0.01
    max_wait_time = 1.0
    waited_time = 0.0
    while waited_time <= max_wait_time:  # pragma: no branch
        logs = [
            f
            for f in os.listdir(tmp_path)
            if os.path.isfile(os.path.join(tmp_path, f))
        ]
        if len(logs) >= 1:
            for log in logs:
                with open(os.path.join(tmp_path, log)) as f:
                    contents = f.read()
                assert 'DEBUG' not in contents
                assert 'Relay server listening on' in contents
            break
        elif waited_time >= max_wait_time:  # pragma: no cover
            raise TimeoutError('Timeout waiting for log file to be written.')
        else:  # pragma: no cover
            time.sleep(sleep_time)
            waited_time += sleep_time


def _serve(config: RelayServingConfig) -> None:
    asyncio.run(serve(config))


@pytest.mark.timeout(5)
@pytest.mark.asyncio()
async def test_serve_in_subprocess() -> None:
    config = RelayServingConfig(host='127.0.0.1', port=open_port())
    address = f'ws://{config.host}:{config.port}'

    process = multiprocessing.Process(target=_serve, args=(config,))
    process.start()

    while True:
        try:
            client = await PeerClient.connect(address)
        except OSError:  # pragma: no cover
            await asyncio.sleep(0.01)
        else:
            # Coverage doesn't detect the singular break but it does
            # get executed to break from the loop
            break  # pragma: no cover

    pong_waiter = await client.websocket.ping()
    await asyncio.wait_for(pong_waiter, 1)

    process.terminate()

    with pytest.raises(websockets.exceptions.ConnectionClosedOK):
        await client.websocket.recv()

    process.join()

    await client.close()
