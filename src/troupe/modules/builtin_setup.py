"""
Troupe setup module (gather_facts)

Collect a minimal set of facts from a POSIX host:

- ansible_system: kernel name (Linux, Darwin)
- ansible_hostname / ansible_fqdn
- ansible_architecture
- ansible_distribution / ansible_distribution_version / ansible_os_family
"""

from typing import Dict

from troupe.modules.base import Module, ModuleResult, register_module

OS_FAMILIES = {
    'ubuntu': 'Debian',
    'debian': 'Debian',
    'linuxmint': 'Debian',
    'centos': 'RedHat',
    'rhel': 'RedHat',
    'fedora': 'RedHat',
    'rocky': 'RedHat',
    'almalinux': 'RedHat',
    'amzn': 'RedHat',
    'alpine': 'Alpine',
    'arch': 'Archlinux',
    'opensuse': 'Suse',
    'sles': 'Suse',
}

PROBES = {
    'ansible_system': "uname -s",
    'ansible_hostname': "hostname -s 2>/dev/null || hostname",
    'ansible_fqdn': "hostname -f 2>/dev/null || hostname",
    'ansible_architecture': "uname -m",
}


@register_module
class SetupModule(Module):
    """Gather facts about the target host."""

    name = "setup"

    async def run(self) -> ModuleResult:
        if self.connection is None:
            return ModuleResult(failed=True, msg="No connection available")

        facts: Dict[str, str] = {}
        for fact, command in PROBES.items():
            result = await self.connection.run(command)
            if result.success:
                facts[fact] = result.stdout.strip()

        result = await self.connection.run("cat /etc/os-release 2>/dev/null")
        release = parse_os_release(result.stdout) if result.success else {}
        distribution = release.get('ID', facts.get('ansible_system', 'unknown'))
        facts['ansible_distribution'] = release.get('NAME', distribution)
        facts['ansible_distribution_version'] = release.get('VERSION_ID', '')
        facts['ansible_os_family'] = OS_FAMILIES.get(distribution.lower(), facts['ansible_distribution'])

        return ModuleResult(msg="Facts gathered", facts=facts)


def parse_os_release(content: str) -> Dict[str, str]:
    """Parse /etc/os-release KEY=value lines."""
    values: Dict[str, str] = {}
    for line in content.splitlines():
        key, sep, value = line.strip().partition('=')
        if sep and key and not key.startswith('#'):
            values[key] = value.strip().strip('"\'')
    return values
