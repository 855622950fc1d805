"""
Launch script generator — the QEMU command line for a variant's VM.

The rendered script is written next to the disk and ISO so it can be
run by hand as well as by the ``boot-vm`` step. Values are baked in at
render time and shell-quoted.
"""

from __future__ import annotations

import shlex

from agentvm.core.models.template import GeneratedFile
from agentvm.core.models.variant import VariantConfig

LAUNCH_SCRIPT = "launch-vm.sh"

_HEADER = """\
#!/usr/bin/env bash
# {title} launch script, generated by agentvm render launch-script
set -euo pipefail
cd "$(dirname "$0")"

echo "Starting {vm_name}: {cpus} CPUs, {memory_mb}MB RAM"
echo "SSH:  {ssh_command}"
echo "API:  {api_url}"
echo "Press Ctrl+A then X to quit QEMU"

"""


def qemu_args(config: VariantConfig) -> list[str]:
    """QEMU arguments, one option (with its value) per entry."""
    if config.cpu_isolation:
        cpu = f"-enable-kvm -cpu host -smp {config.cpus}"
    else:
        cpu = f"-cpu max -smp {config.cpus}"

    hostfwd = (
        f"hostfwd=tcp::{config.ssh_port}-:22,"
        f"hostfwd=tcp::{config.api_port}-:8000"
    )
    args = [
        f"-name {shlex.quote(config.vm_name)}",
        "-M q35",
        cpu,
        f"-m {config.memory_mb}",
        f"-drive file={shlex.quote(config.disk_path)},format=qcow2,if=virtio,cache=none",
    ]
    if config.iso_path:
        args.append(f"-drive file={shlex.quote(config.iso_path)},media=cdrom,readonly=on")
    args.append(f"-nic user,model=virtio-net-pci,{hostfwd}")
    if config.host_projects_path:
        share = shlex.quote(
            f"local,path={config.host_projects_path},mount_tag=host-projects,"
            "security_model=passthrough"
        )
        args.append(f"-virtfs {share}")
    args.extend(["-display none", "-nographic"])
    if config.iso_path:
        args.append("-boot once=d")
    return args


def generate_launch_script(config: VariantConfig) -> GeneratedFile:
    header = _HEADER.format(
        title=config.display_name,
        vm_name=config.vm_name,
        cpus=config.cpus,
        memory_mb=config.memory_mb,
        ssh_command=config.ssh_command,
        api_url=config.api_url,
    )
    command = " \\\n    ".join(["exec qemu-system-x86_64", *qemu_args(config)])
    return GeneratedFile(
        path=LAUNCH_SCRIPT,
        content=header + command + "\n",
        mode="0755",
        reason=f"QEMU launch script for {config.vm_name}",
    )
