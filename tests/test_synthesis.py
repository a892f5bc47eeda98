from __future__ import annotations

import json

import pytest

from conftest import make_endpoints, make_service

from errors import NamingCollision
from farms.endpoints import backend_names, fed_farms, synthesize_backends
from farms.service import forget_farm, record_service, synthesize_farms


def _farm(plan, name):
    return next(f for f in plan.farms if f["name"] == name)


def test_web_hash_srcip_farm() -> None:
    plan = synthesize_farms(make_service(annotations={"scheduler": "hash-srcip"}))
    assert plan.farm_names == ["web--http"]
    farm = _farm(plan, "web--http")
    assert farm["scheduler"] == "hash"
    assert farm["sched-param"] == "srcip"
    assert farm["virtual-addr"] == "10.0.0.5"
    assert farm["virtual-ports"] == "80"
    assert farm["protocol"] == "tcp"
    assert farm["mode"] == "snat"
    assert farm["state"] == "up"
    assert farm["intra-connect"] == "on"
    # empty values are omitted from the wire
    assert "helper" not in farm
    assert "iface" not in farm


def test_node_port_service_gets_twin() -> None:
    svc = make_service(
        svc_type="NodePort",
        ports=[{"name": "http", "port": 80, "nodePort": 30080, "protocol": "TCP"}],
    )
    plan = synthesize_farms(svc)
    assert plan.farm_names == ["web--http", "web--http--nodePort"]
    assert plan.node_ports == {"web--http": "web--http--nodePort"}
    twin = _farm(plan, "web--http--nodePort")
    assert twin["virtual-ports"] == "30080"
    assert "virtual-addr" not in twin


def test_cluster_ip_service_has_no_twin_even_with_node_port() -> None:
    svc = make_service(ports=[{"name": "http", "port": 80, "nodePort": 30080}])
    assert synthesize_farms(svc).farm_names == ["web--http"]


def test_external_ips_get_twins() -> None:
    plan = synthesize_farms(make_service(external_ips=["192.0.2.10", "2001:db8::1"]))
    assert plan.farm_names == ["web--http", "web--http--192.0.2.10", "web--http--2001:db8::1"]
    assert _farm(plan, "web--http--2001:db8::1")["family"] == "ipv6"
    assert _farm(plan, "web--http--192.0.2.10")["virtual-addr"] == "192.0.2.10"


def test_unnamed_port_and_udp() -> None:
    plan = synthesize_farms(make_service(ports=[{"port": 53, "protocol": "UDP"}]))
    assert plan.farm_names == ["web--default"]
    assert _farm(plan, "web--default")["protocol"] == "udp"


def test_headless_and_external_name_produce_nothing() -> None:
    assert synthesize_farms(make_service(cluster_ip="None")).farms == []
    assert synthesize_farms(make_service(svc_type="ExternalName", cluster_ip="")).farms == []


def test_dsr_farm_carries_iface() -> None:
    plan = synthesize_farms(
        make_service(
            svc_type="NodePort",
            annotations={"mode": "dsr"},
            ports=[{"name": "http", "port": 80, "nodePort": 30080}],
        )
    )
    assert _farm(plan, "web--http")["iface"] == "cni0"
    assert plan.dsr_farms == ["web--http"]


def test_synthesis_is_deterministic() -> None:
    svc = make_service(
        svc_type="LoadBalancer",
        annotations={"scheduler": "symhash", "maxconns": "10"},
        ports=[{"name": "http", "port": 80, "nodePort": 30080}, {"name": "https", "port": 443, "nodePort": 30443}],
        external_ips=["192.0.2.10"],
    )
    first = json.dumps(synthesize_farms(svc).farms, sort_keys=True)
    second = json.dumps(synthesize_farms(svc).farms, sort_keys=True)
    assert first == second


def test_record_service_claims_and_correlates(registry) -> None:
    svc = make_service(
        svc_type="NodePort",
        annotations={"maxconns": "50"},
        ports=[{"name": "http", "port": 80, "nodePort": 30080}],
    )
    record_service(synthesize_farms(svc), registry)
    assert not registry.may_touch("other/web", "web--http")
    assert registry.published_farms("web--http") == ["web--http", "web--http--nodePort"]
    assert registry.ceiling("web--http") == 50

    # The service stops being node-accessible: the twin entry goes away.
    record_service(synthesize_farms(make_service()), registry)
    assert registry.published_farms("web--http") == ["web--http"]


def test_same_name_in_another_namespace_collides(registry) -> None:
    record_service(synthesize_farms(make_service(ns="a")), registry)
    with pytest.raises(NamingCollision) as exc:
        record_service(synthesize_farms(make_service(ns="b")), registry)
    assert exc.value.farm == "web--http"
    assert registry.may_touch("a/web", "web--http")


def test_forget_farm_releases_everything(registry) -> None:
    svc = make_service(svc_type="NodePort", ports=[{"name": "http", "port": 80, "nodePort": 30080}])
    plan = synthesize_farms(svc)
    record_service(plan, registry)
    forget_farm(plan.owner, "web--http", registry)
    assert registry.may_touch("other/web", "web--http")
    assert registry.published_farms("web--http") == ["web--http"]
    assert registry.ceiling("web--http") == 0


def test_backends_replicate_to_every_twin(registry) -> None:
    svc = make_service(
        svc_type="NodePort",
        annotations={"maxconns": "50"},
        ports=[{"name": "http", "port": 80, "nodePort": 30080}],
        external_ips=["192.0.2.10"],
    )
    service_plan = synthesize_farms(svc)
    record_service(service_plan, registry)

    plan = synthesize_backends(make_endpoints(backends=[("web-1", "10.1.0.1"), ("web-2", "10.1.0.2")]), registry)
    assert plan.backends == ["web-1", "web-2"]
    assert [f["name"] for f in plan.farms] == ["web--http", "web--http--nodePort", "web--http--192.0.2.10"]
    for farm in plan.farms:
        assert [b["name"] for b in farm["backends"]] == ["web-1", "web-2"]
        assert farm["backends"][0] == {
            "name": "web-1",
            "ip-addr": "10.1.0.1",
            "state": "up",
            "port": "8080",
            "est-connlimit": "50",
        }
    # no orphaned backends
    assert {f["name"] for f in plan.farms} <= set(service_plan.farm_names)


def test_backend_without_target_ref_uses_object_name(registry) -> None:
    ep = {
        "metadata": {"name": "legacy", "namespace": "default"},
        "subsets": [{"addresses": [{"ip": "10.1.0.9"}, {"hostname": "no-ip"}], "ports": [{"port": 9000}]}],
    }
    plan = synthesize_backends(ep, registry)
    assert plan.backends == ["legacy"]
    assert plan.feeds == ["legacy--default"]
    assert plan.farms == [
        {
            "name": "legacy--default",
            "backends": [{"name": "legacy", "ip-addr": "10.1.0.9", "state": "up", "port": "9000", "est-connlimit": "0"}],
        }
    ]


def test_backend_names_and_fed_farms() -> None:
    ep = make_endpoints(
        backends=[("web-1", "10.1.0.1"), ("web-2", "10.1.0.2")],
        ports=[{"name": "http", "port": 8080}, {"name": "metrics", "port": 9090}],
    )
    assert backend_names(ep) == ["web-1", "web-2"]
    assert fed_farms(ep) == ["web--http", "web--metrics"]
    assert backend_names(None) == []


def test_dsr_targets_only_for_dsr_farms(registry) -> None:
    registry.dsr_enter("web--http", "10.0.0.5")
    plan = synthesize_backends(
        make_endpoints(
            backends=[("web-1", "10.1.0.1")],
            ports=[{"name": "http", "port": 8080}, {"name": "metrics", "port": 9090}],
        ),
        registry,
    )
    assert plan.dsr_targets == {"web--http": ["web-1"]}


def test_endpoints_skip_farms_owned_elsewhere(registry) -> None:
    record_service(synthesize_farms(make_service(ns="a")), registry)
    plan = synthesize_backends(make_endpoints(ns="b"), registry)
    assert plan.farms == []
    assert plan.backends == ["web-1"]
