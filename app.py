# app.py
from __future__ import annotations

import threading
import time

from kubernetes import client
from kubernetes import config as kubeconfig

import config
from dsr.aliases import AliasManager
from dsr.netns import DockerExecutor, PodDirectory
from handlers import ENDPOINTS, NETWORK_POLICY, SERVICE, Controller
from nftlb import NftlbClient
from registry import CorrelationRegistry

from observe.informer import Informer
from observe.runtime import KeyedWorkerPool, run_informers


def load_kube() -> None:
    try:
        kubeconfig.load_incluster_config()
        print("[controller] using in-cluster config")
    except Exception:
        kubeconfig.load_kube_config()
        print("[controller] using kubeconfig (local)")


def build_controller(corev1) -> Controller:
    registry = CorrelationRegistry()
    sink = NftlbClient()
    aliases = AliasManager(registry, PodDirectory(corev1), DockerExecutor())
    return Controller(registry, sink, aliases)


def build_informers(corev1, networking, emit):
    return [
        Informer(SERVICE, corev1.list_service_for_all_namespaces, emit),
        Informer(ENDPOINTS, corev1.list_endpoints_for_all_namespaces, emit),
        Informer(NETWORK_POLICY, networking.list_network_policy_for_all_namespaces, emit),
    ]


def main() -> None:
    load_kube()

    corev1 = client.CoreV1Api()
    networking = client.NetworkingV1Api()
    controller = build_controller(corev1)

    pool = KeyedWorkerPool(controller.handle, workers=config.WORKERS)
    pool.start()

    stop_event = threading.Event()
    threads = run_informers(stop_event, build_informers(corev1, networking, pool.submit))
    print(f"[controller] syncing to nftlb at {config.NFTLB_URL} with {config.WORKERS} worker(s)")

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        print("[controller] shutting down")
        stop_event.set()
        for t in threads:
            t.join(timeout=5)
        pool.stop()


if __name__ == "__main__":
    main()
