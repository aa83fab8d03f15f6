"""Hello burst - a throwaway fleet in one call.

Spins up two workers and a leader on spot capacity, installs a package on
each, prints what came up, and tears everything down again:

    ┌──────────────────────────────────────────┐
    │  leader   1x t3.small   54.x.x.x         │
    │  workers  2x t3.small   54.x.x.x ...     │
    │                                          │
    │  terminated on exit, success or not      │
    └──────────────────────────────────────────┘
"""
from burst import BurstBuilder, MachineSetup

AMI = "ami-0ff8a91507f77f867"


async def install(session) -> None:
    await session.run("sudo yum install -y htop", check=True)


def main(fleet) -> dict[str, list[str]]:
    for name, machines in fleet.items():
        for machine in machines:
            print(f"{name:8} {machine.instance_type:10} {machine.public_ip:16} {machine.private_ip}")
    return {name: [m.instance_id for m in machines] for name, machines in fleet.items()}


if __name__ == "__main__":
    result = (
        BurstBuilder()
        .add_set("workers", 2, MachineSetup("t3.small", AMI, install))
        .add_set("leader", 1, MachineSetup("t3.small", AMI, install))
        .set_max_duration(1)
        .use_term_logger()
        .run(main)
    )
    print(result)
