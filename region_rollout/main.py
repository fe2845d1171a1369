"""
Service entry point.

`serve` runs the failover controller with the operator API, `rollout` runs one
rollout to completion (approvals arrive over the same API) and `ensure-zones`
registers the hosted zone of every environment.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from typing import List, Optional

from aiohttp import web
from prometheus_client import CONTENT_TYPE_LATEST

from . import __version__
from .config import PlatformConfig, load_config
from .deployment import CloudFormationProvider, DryRunProvider, RolloutCoordinator
from .errors import ConfigurationError, GateNotFoundError, RolloutError
from .failover import FailoverController, HostedZoneRegistrar, Route53RecordWriter
from .logger import setup_logging
from .metrics import RolloutMetrics
from .monitoring import AlertManager

logger = logging.getLogger("RegionRollout")


class RolloutService:
    """Holds the long-lived components shared by the HTTP handlers"""

    def __init__(
        self,
        config: PlatformConfig,
        coordinator: RolloutCoordinator,
        controller: Optional[FailoverController] = None,
        metrics: Optional[RolloutMetrics] = None,
    ):
        self.config = config
        self.coordinator = coordinator
        self.controller = controller
        self.metrics = metrics or RolloutMetrics()
        self.ready = False


def build_provider(config: PlatformConfig, dry_run: bool = False):
    if dry_run:
        return DryRunProvider()
    return CloudFormationProvider(config.templates, role_name=config.deployment_role)


def build_service(config: PlatformConfig, dry_run: bool = False, with_failover: bool = True) -> RolloutService:
    metrics = RolloutMetrics()
    alert_manager = AlertManager(config.alertmanager_url)
    coordinator = RolloutCoordinator(
        config,
        build_provider(config, dry_run),
        metrics=metrics,
        alert_manager=alert_manager,
    )

    controller = None
    if with_failover:
        controller = FailoverController(
            config,
            writer=None if dry_run else Route53RecordWriter(),
            registrar=None if dry_run else HostedZoneRegistrar(config),
            metrics=metrics,
            alert_manager=alert_manager,
        )
    return RolloutService(config, coordinator, controller=controller, metrics=metrics)


# ── HTTP handlers ─────────────────────────────────────────────────────────────

async def health_check(request):
    return web.Response(text="OK", status=200)


async def readiness_check(request):
    service: RolloutService = request.app['service']
    if not service.ready:
        return web.Response(text="NOT READY", status=503)
    return web.Response(text="OK", status=200)


async def metrics_handler(request):
    service: RolloutService = request.app['service']
    return web.Response(body=service.metrics.export(), headers={'Content-Type': CONTENT_TYPE_LATEST})


async def get_routing(request):
    service: RolloutService = request.app['service']
    if service.controller is None:
        return web.json_response({'error': 'failover controller not running'}, status=404)
    return web.json_response(service.controller.get_status())


async def start_rollout(request):
    service: RolloutService = request.app['service']
    body = await request.json() if request.can_read_body else {}
    revision = body.get('revision')
    if not revision:
        return web.json_response({'error': 'revision is required'}, status=400)

    try:
        rollout = await service.coordinator.trigger(revision)
    except ConfigurationError as e:
        return web.json_response({'error': str(e)}, status=422)
    return web.json_response(rollout.to_dict(), status=202)


async def get_rollout(request):
    service: RolloutService = request.app['service']
    try:
        rollout = service.coordinator.get(request.match_info['rollout_id'])
    except RolloutError as e:
        return web.json_response({'error': str(e)}, status=404)
    return web.json_response(rollout.to_dict())


async def approve_gate(request):
    service: RolloutService = request.app['service']
    body = await request.json() if request.can_read_body else {}

    try:
        gate = service.coordinator.approve(
            request.match_info['target_id'],
            request.match_info['gate_id'],
            approved_by=body.get('approved_by', 'operator'),
            rollout_id=request.match_info['rollout_id'],
        )
    except (GateNotFoundError, RolloutError) as e:
        return web.json_response({'error': str(e)}, status=404)
    return web.json_response(gate.to_dict())


async def cancel_rollout(request):
    service: RolloutService = request.app['service']
    try:
        cancelled = service.coordinator.cancel(
            request.match_info['rollout_id'],
            target_id=request.query.get('target'),
        )
    except RolloutError as e:
        return web.json_response({'error': str(e)}, status=404)
    return web.json_response({'cancelled': cancelled})


def create_api_app(service: RolloutService) -> web.Application:
    app = web.Application()
    app['service'] = service
    app.router.add_get('/health', health_check)
    app.router.add_get('/ready', readiness_check)
    app.router.add_get('/routing', get_routing)
    app.router.add_post('/rollouts', start_rollout)
    app.router.add_get('/rollouts/{rollout_id}', get_rollout)
    app.router.add_post('/rollouts/{rollout_id}/cancel', cancel_rollout)
    app.router.add_post(
        '/rollouts/{rollout_id}/targets/{target_id}/gates/{gate_id}/approve',
        approve_gate,
    )
    return app


def create_metrics_app(service: RolloutService) -> web.Application:
    app = web.Application()
    app['service'] = service
    app.router.add_get('/metrics', metrics_handler)
    return app


async def start_web_servers(service: RolloutService):
    """Start web servers for the operator API/health and for metrics"""
    runners = []
    for app, port in (
        (create_api_app(service), service.config.health_port),
        (create_metrics_app(service), service.config.metrics_port),
    ):
        runner = web.AppRunner(app)
        await runner.setup()
        await web.TCPSite(runner, '0.0.0.0', port).start()
        logger.info(f"Listening on port {port}")
        runners.append(runner)

    # Keep running until cancelled
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        for runner in runners:
            await runner.cleanup()


# ── Commands ──────────────────────────────────────────────────────────────────

async def shutdown(sig, tasks: List[asyncio.Task]):
    """Cancel the service's tasks on SIGINT/SIGTERM."""
    logger.info(f"Received exit signal {sig.name}...")
    for task in tasks:
        task.cancel()
    logger.info(f"Cancelling {len(tasks)} outstanding tasks")


def install_signal_handlers(tasks: List[asyncio.Task]):
    loop = asyncio.get_running_loop()
    for s in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(s, lambda s=s: asyncio.create_task(shutdown(s, tasks)))
        except NotImplementedError:
            pass


async def run_failover(service: RolloutService):
    await service.controller.setup()
    service.ready = True
    await service.controller.continuous_monitoring()


async def serve(config: PlatformConfig, dry_run: bool = False):
    service = build_service(config, dry_run=dry_run)
    logger.info(
        f"Starting rollout service v{__version__}: environments={config.environments} "
        f"regions={config.regions} primary={config.primary_region}"
    )

    tasks = [
        asyncio.create_task(run_failover(service), name="FailoverMonitor"),
        asyncio.create_task(start_web_servers(service), name="WebServers"),
    ]
    install_signal_handlers(tasks)

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Services stopped.")
    finally:
        if service.controller:
            service.controller.stop_monitoring()


async def run_rollout(
    config: PlatformConfig,
    revision: str,
    dry_run: bool = False,
    approve: Optional[List[str]] = None,
    serve_api: bool = True,
):
    """Run one rollout to completion; pending gates are approved over the API."""
    service = build_service(config, dry_run=dry_run, with_failover=False)
    service.ready = True

    rollout = await service.coordinator.trigger(revision)
    for gate_id in approve or []:
        target_id = gate_id.split(':', 1)[0]
        service.coordinator.approve(target_id, gate_id, approved_by='cli', rollout_id=rollout.rollout_id)

    server = asyncio.create_task(start_web_servers(service), name="WebServers") if serve_api else None
    waiter = asyncio.create_task(service.coordinator.wait(rollout.rollout_id), name="Rollout")
    install_signal_handlers([waiter])

    try:
        await waiter
    except asyncio.CancelledError:
        service.coordinator.cancel(rollout.rollout_id)
        await service.coordinator.wait(rollout.rollout_id)
    finally:
        if server:
            server.cancel()
            await asyncio.gather(server, return_exceptions=True)

    return rollout


async def ensure_zones(config: PlatformConfig):
    registrar = HostedZoneRegistrar(config)
    return await registrar.ensure_all()


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description='Multi-region rollout orchestrator and failover controller')
    parser.add_argument('--config', default=None, help='YAML configuration file (default: $ROLLOUT_CONFIG)')
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    subparsers = parser.add_subparsers(dest='command', required=True)

    serve_parser = subparsers.add_parser('serve', help='Run failover monitoring and the operator API')
    serve_parser.add_argument('--dry-run', action='store_true', help='Track routing without writing DNS')

    rollout_parser = subparsers.add_parser('rollout', help='Roll a revision out to every target')
    rollout_parser.add_argument('--revision', required=True, help='Source revision to deploy')
    rollout_parser.add_argument('--dry-run', action='store_true', help='Log applies without provisioning')
    rollout_parser.add_argument(
        '--approve', action='append', default=[], metavar='GATE_ID',
        help='Approve a manual gate up front (repeatable)'
    )
    rollout_parser.add_argument('--no-api', action='store_true', help='Do not start the operator API')

    subparsers.add_parser('ensure-zones', help='Create or look up the hosted zone of every environment')

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging()

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.critical(f"Invalid configuration: {e}")
        return 2

    setup_logging(config.log_level, config.structured_logs)

    try:
        if args.command == 'serve':
            asyncio.run(serve(config, dry_run=args.dry_run))
            return 0

        if args.command == 'rollout':
            rollout = asyncio.run(run_rollout(
                config, args.revision,
                dry_run=args.dry_run, approve=args.approve, serve_api=not args.no_api,
            ))
            print(json.dumps(rollout.to_dict(), indent=2))
            return 0 if rollout.status == 'succeeded' else 1

        if args.command == 'ensure-zones':
            zones = asyncio.run(ensure_zones(config))
            for env, zone in zones.items():
                print(f"{env}\t{zone.zone_name}\t{zone.zone_id}\t{'created' if zone.created else 'existing'}")
            return 0

    except (ConfigurationError, GateNotFoundError) as e:
        logger.critical(str(e))
        return 2
    except KeyboardInterrupt:
        return 130

    return 1


if __name__ == "__main__":
    sys.exit(main())
