"""Command line entry point: run a proxier until interrupted."""
import argparse
import logging
import signal
import sys
import threading

from proxier.config import ProxierConfig, load_kube_client
from proxier.errors import ProxierError, SetupError
from proxier.log import configure_logging
from proxier.proxier import Proxier

logger = logging.getLogger(__name__)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="proxier",
        description="Port-forward every service in a Kubernetes cluster to this machine.",
    )
    parser.add_argument("--kubeconfig", help="Path to kubeconfig (env: KUBECONFIG)")
    parser.add_argument("--context", help="kubeconfig context (env: PROXIER_CONTEXT)")
    parser.add_argument(
        "--in-cluster",
        action="store_true",
        default=None,
        help="Use the pod's service account (env: PROXIER_IN_CLUSTER)",
    )
    parser.add_argument("-n", "--namespace", help="Only watch this namespace (env: PROXIER_NAMESPACE)")
    parser.add_argument("--bind-network", help="Loopback network for tunnel addresses (env: PROXIER_BIND_NETWORK)")
    parser.add_argument("--watch-timeout", type=int, help="Server-side watch timeout in seconds")
    parser.add_argument("--resolve-retries", type=int, help="Extra endpoint lookup attempts for headless services")
    parser.add_argument("--log-level", help="Log level (env: PROXIER_LOG_LEVEL)")
    parser.add_argument(
        "--list-interval",
        type=float,
        default=0,
        help="Log the port-forward table every N seconds (default: off)",
    )
    return parser


def format_statuses(statuses):
    """Render Proxier.list() output as log lines."""
    lines = []
    for status in sorted(statuses, key=lambda s: (s.service.namespace, s.service.name)):
        if status.resolution_error:
            lines.append(f"  {status.service}: ✗ {status.resolution_error}")
            continue
        for tunnel in status.statuses:
            addresses = ", ".join(tunnel.local_address) or "-"
            line = f"  {status.service} [{tunnel.state.value}] {addresses}"
            if tunnel.last_error:
                line += f" ({tunnel.last_error})"
            lines.append(line)
    return lines


def _report(proxier, interval):
    while not proxier.cancel.wait(interval):
        try:
            statuses = proxier.list()
        except ProxierError:
            continue
        logger.info(f"{len(statuses)} service(s) forwarded:")
        for line in format_statuses(statuses):
            logger.info(line)


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        cfg = ProxierConfig.from_env().override(
            kubeconfig=args.kubeconfig,
            context=args.context,
            in_cluster=args.in_cluster,
            namespace=args.namespace,
            bind_network=args.bind_network,
            watch_timeout=args.watch_timeout,
            resolve_retries=args.resolve_retries,
            log_level=args.log_level,
        )
        configure_logging(cfg.log_level)
        core_v1 = load_kube_client(cfg)
    except SetupError as e:
        logging.basicConfig()
        logger.error(str(e))
        return 1

    proxier = Proxier(core_v1, cfg)

    def handle_signal(signum, frame):
        logger.info(f"Received {signal.Signals(signum).name}")
        proxier.stop()

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    if args.list_interval > 0:
        threading.Thread(target=_report, args=(proxier, args.list_interval), daemon=True).start()

    try:
        proxier.start()
    except SetupError as e:
        logger.error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
