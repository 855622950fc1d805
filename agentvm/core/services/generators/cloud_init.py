"""
Cloud-init generator — NoCloud seed for the Arch VM's first boot.

``user-data`` is built as a dict and dumped with PyYAML so the package
list can come from the variant's manifest instead of a hand-kept copy.
"""

from __future__ import annotations

import yaml

from agentvm.core.models.template import GeneratedFile
from agentvm.core.models.variant import VariantConfig

SEED_DIR = "cloud-init"

INSTALL_DIR = "/opt/agentvm"

_SETUP_UNIT = """\
[Unit]
Description=AgentVM Setup Script
After=network-online.target
Wants=network-online.target
ConditionPathExists=!{install_dir}/.setup-done

[Service]
Type=oneshot
User=root
ExecStart={install_dir}/setup.sh
ExecStartPost=/usr/bin/touch {install_dir}/.setup-done

[Install]
WantedBy=multi-user.target
"""

_SETUP_SCRIPT = """\
#!/usr/bin/env bash
set -euo pipefail

echo "[AgentVM] Starting first-boot setup..."

reflector --latest 20 --protocol https --sort rate --save /etc/pacman.d/mirrorlist || \\
    echo "[AgentVM] reflector failed, keeping default mirrors"

sudo -u {user} bash -c '
  cd /home/{user}
  python -m venv agent-env
  source /home/{user}/agent-env/bin/activate
  pip install "aider-chat>=0.38.1" "opencode>=0.1.0"
'

npm install -g "@anthropic-ai/claude-code"

echo "[AgentVM] Setup completed successfully"
"""

_MOTD = """\
╔═══════════════════════════════════════════════════════════╗
║          Oligarchy AgentVM — Arch Linux Edition           ║
╚═══════════════════════════════════════════════════════════╝

Services:
  • Agent API: http://localhost:{api_port}
  • Agent environment: /home/{user}/agent-env

Commands:
  • Update system: sudo pacman -Syu
  • Activate environment: source {install_dir}/activate.sh
"""


class _LiteralDumper(yaml.SafeDumper):
    """SafeDumper that writes multi-line strings as ``|`` blocks."""


def _str_presenter(dumper: yaml.SafeDumper, data: str) -> yaml.ScalarNode:
    style = "|" if "\n" in data else None
    return dumper.represent_scalar("tag:yaml.org,2002:str", data, style=style)


_LiteralDumper.add_representer(str, _str_presenter)


def user_data(config: VariantConfig, packages: list[str]) -> dict:
    """The cloud-config document as a plain mapping."""
    user = config.ssh_user
    return {
        "timezone": "UTC",
        "locale": "en_US.UTF-8",
        "keyboard": {"layout": "us"},
        "ssh_pwauth": True,
        "ssh_deletekeys": False,
        "users": [
            {
                "name": user,
                "groups": ["wheel", "docker", "video", "input"],
                "shell": "/bin/bash",
                "sudo": ["ALL=(ALL) NOPASSWD:ALL"],
                "lock_passwd": False,
            },
        ],
        "chpasswd": {
            "expire": False,
            "users": [{"name": user, "password": config.default_password, "type": "text"}],
        },
        "packages": list(packages),
        "write_files": [
            {
                "path": "/etc/systemd/system/agent-setup.service",
                "permissions": "0644",
                "content": _SETUP_UNIT.format(install_dir=INSTALL_DIR),
            },
            {
                "path": f"{INSTALL_DIR}/setup.sh",
                "permissions": "0755",
                "content": _SETUP_SCRIPT.format(user=user),
            },
            {
                "path": "/etc/motd",
                "permissions": "0644",
                "content": _MOTD.format(
                    api_port=config.api_port, user=user, install_dir=INSTALL_DIR
                ),
            },
        ],
        "runcmd": [
            ["systemctl", "enable", "--now", "sshd"],
            ["systemctl", "enable", "--now", "NetworkManager"],
            ["systemctl", "enable", "--now", "docker"],
            ["systemctl", "enable", "--now", "agent-setup.service"],
        ],
    }


def generate_user_data(config: VariantConfig, packages: list[str]) -> GeneratedFile:
    body = yaml.dump(
        user_data(config, packages),
        Dumper=_LiteralDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
    )
    return GeneratedFile(
        path=f"{SEED_DIR}/user-data",
        content="#cloud-config\n" + body,
        reason=f"cloud-init user-data ({len(packages)} packages)",
    )


def generate_meta_data(config: VariantConfig) -> GeneratedFile:
    body = yaml.safe_dump(
        {"instance-id": config.vm_name, "local-hostname": config.vm_name},
        sort_keys=False,
    )
    return GeneratedFile(
        path=f"{SEED_DIR}/meta-data",
        content=body,
        reason="cloud-init meta-data",
    )
