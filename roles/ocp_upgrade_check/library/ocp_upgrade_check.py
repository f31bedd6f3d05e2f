#!/usr/bin/python
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: MIT

"""Ansible module running OpenShift pre/post-upgrade health checks.

Connects to the cluster API from the Ansible control node, runs the
ordered check catalog for the requested mode(s), and writes one audit log
and one HTML report per mode. All API calls are read-only (list/get).
"""

from __future__ import annotations

DOCUMENTATION = r"""
---
module: ocp_upgrade_check
short_description: Validate OpenShift cluster health before and after an upgrade
version_added: "1.0.0"
description:
  - Runs an ordered set of read-only health checks (API responsiveness,
    cluster version and channel, node readiness, cluster operators, etcd
    quorum, critical namespace pods, persistent volumes, resource
    utilization, pending operations, ingress/DNS, machine config pools).
  - Classifies each result, computes a Pass/Warn/Fail verdict per mode and
    writes an append-only log file and an HTML report.
  - Completely read-only. Nothing is changed on the cluster.
  - In check mode the checks still run and the verdict is returned, but
    no log file or HTML report is written.
options:
  mode:
    description: Which checks to run. C(both) runs pre then post.
    type: str
    default: both
    choices: [pre, post, both]
  kubeconfig:
    description: Path to the kubeconfig file.
    type: path
  context:
    description: Kubeconfig context to use. Defaults to the current context.
    type: str
  api_url:
    description: Cluster API URL. Used together with I(api_token). Falls back to C(CLUSTER_URL).
    type: str
  api_token:
    description: Bearer token. Falls back to C(OPENSHIFT_TOKEN).
    type: str
  validate_certs:
    description: Verify the API server certificate when using I(api_url).
    type: bool
    default: true
  cluster_name:
    description: Name used in reports. Defaults to the kubeconfig cluster name or API host.
    type: str
  fail_on_pre_check_errors:
    description: Fail when a critical pre-upgrade check fails or errors.
    type: bool
    default: true
  fail_on_post_check_errors:
    description: Fail when a critical post-upgrade check fails or errors.
    type: bool
    default: true
  post_upgrade_wait_time:
    description: Seconds to wait before running post-upgrade checks.
    type: float
    default: 0
  check_thresholds:
    description: Per-check numeric overrides, e.g. C({resource_utilization: {warning: 75, critical: 90}}).
    type: dict
    default: {}
  critical_namespaces:
    description: Namespaces whose pods must all be healthy.
    type: list
    elements: str
  tags:
    description: Only run checks with these category tags.
    type: list
    elements: str
    default: []
  check_timeout:
    description: Seconds allowed per check attempt.
    type: float
    default: 30
  max_attempts:
    description: Attempts per check for timeouts and transient errors.
    type: int
    default: 3
  retry_backoff:
    description: Initial retry delay in seconds, doubled per retry.
    type: float
    default: 2
  abort_on_critical_failure:
    description: Stop the run at the first critical failure instead of running to completion.
    type: bool
    default: false
  log_dir:
    description: Directory for append-only run logs.
    type: path
    default: logs
  report_dir:
    description: Directory for HTML reports.
    type: path
    default: reports
requirements:
  - kubernetes
  - jinja2
  - ocp_upgrade_check (this repository, installed on the control node)
author:
  - ocp-upgrade-check contributors
"""

EXAMPLES = r"""
- name: Run pre-upgrade checks
  ocp_upgrade_check:
    mode: pre
  register: precheck

- name: Post-upgrade checks after a settle period, warn only
  ocp_upgrade_check:
    mode: post
    post_upgrade_wait_time: 600
    fail_on_post_check_errors: false

- name: Only control-plane checks with a tighter utilization band
  ocp_upgrade_check:
    tags: [control-plane, capacity]
    check_thresholds:
      resource_utilization:
        warning: 70
        critical: 90
"""

RETURN = r"""
verdict:
  description: Worst verdict across the executed modes.
  type: str
  returned: always
  sample: Warn
runs:
  description: One entry per executed mode with verdict, counts, results and artifact paths.
  type: list
  elements: dict
  returned: always
console:
  description: Human-readable summary of every executed mode.
  type: str
  returned: always
"""

import signal
import threading

VERDICT_ORDER = {"Pass": 0, "Warn": 1, "Fail": 2}


def run_module():
    from ansible.module_utils.basic import AnsibleModule, env_fallback

    module = AnsibleModule(
        argument_spec=dict(
            mode=dict(type="str", default="both", choices=["pre", "post", "both"]),
            kubeconfig=dict(type="path", default=None),
            context=dict(type="str", default=None),
            api_url=dict(type="str", default=None, fallback=(env_fallback, ["CLUSTER_URL"])),
            api_token=dict(type="str", default=None, no_log=True, fallback=(env_fallback, ["OPENSHIFT_TOKEN"])),
            validate_certs=dict(type="bool", default=True),
            cluster_name=dict(type="str", default=None),
            fail_on_pre_check_errors=dict(type="bool", default=True),
            fail_on_post_check_errors=dict(type="bool", default=True),
            post_upgrade_wait_time=dict(type="float", default=0),
            check_thresholds=dict(type="dict", default={}),
            critical_namespaces=dict(type="list", elements="str", default=None),
            tags=dict(type="list", elements="str", default=[]),
            check_timeout=dict(type="float", default=30),
            max_attempts=dict(type="int", default=3),
            retry_backoff=dict(type="float", default=2),
            abort_on_critical_failure=dict(type="bool", default=False),
            log_dir=dict(type="path", default="logs"),
            report_dir=dict(type="path", default="reports"),
        ),
        supports_check_mode=True,
    )

    try:
        from ocp_upgrade_check.config import RunConfig
        from ocp_upgrade_check.errors import ConfigError
        from ocp_upgrade_check.reader import KubeClusterReader, connect
        from ocp_upgrade_check.registry import CheckRegistry
        from ocp_upgrade_check.runner import exit_code, run_checks
    except ImportError as exc:
        module.fail_json(msg=f"The 'ocp_upgrade_check' package and its dependencies are required: {exc}")
        return

    params = module.params
    try:
        api_client, cluster = connect(
            kubeconfig=params["kubeconfig"],
            context=params["context"],
            api_url=params["api_url"],
            api_token=params["api_token"],
            verify_ssl=params["validate_certs"],
            cluster_name=params["cluster_name"],
        )
        config = RunConfig.from_params(dict(params, cluster_name=cluster.name, endpoint=cluster.endpoint))
        registry = CheckRegistry.default(config)
    except ConfigError as exc:
        module.fail_json(msg=f"Invalid configuration: {exc}")
        return

    cancel = threading.Event()
    for signum in (signal.SIGTERM, signal.SIGINT):
        signal.signal(signum, lambda *_: cancel.set())

    reader = KubeClusterReader(api_client, request_timeout=config.check_timeout)
    outcomes = run_checks(config, reader, cluster=cluster, registry=registry, cancel=cancel,
                          write_artifacts=not module.check_mode)

    for outcome in outcomes:
        if outcome.write_error:
            module.warn(f"Report storage failed: {outcome.write_error}")

    verdict = max((o.report.verdict.value for o in outcomes), key=VERDICT_ORDER.get, default="Pass")
    result = dict(
        changed=False,
        verdict=verdict,
        runs=[o.to_dict() for o in outcomes],
        console="\n\n".join(o.rendered.console for o in outcomes),
    )
    if exit_code(outcomes, config):
        module.fail_json(msg=f"Upgrade health verdict is {verdict}", **result)
        return
    module.exit_json(**result)


def main():
    run_module()


if __name__ == "__main__":
    main()
