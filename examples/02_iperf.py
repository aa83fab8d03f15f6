"""Network throughput between spot instances.

One server runs iperf3 in daemon mode; every client measures against the
server's private address. The fleet callback is async, so the clients run
their measurements concurrently over the sessions opened during setup.
"""
import asyncio
import json

from burst import AWS, BurstBuilder, LogConfig, MachineSetup

AMI = "ami-0ff8a91507f77f867"


async def install_iperf(session) -> None:
    await session.run("sudo yum install -y iperf3", check=True)


async def start_server(session) -> None:
    await install_iperf(session)
    await session.run("iperf3 --server --daemon", check=True)


async def measure(fleet) -> dict[str, float]:
    server = fleet["server"][0]

    async def one(client) -> tuple[str, float]:
        out = await client.ssh.cmd(f"iperf3 --json --time 5 --client {server.private_ip}")
        bits = json.loads(out)["end"]["sum_received"]["bits_per_second"]
        return client.public_ip, bits / 1e9

    results = await asyncio.gather(*(one(c) for c in fleet["client"]))
    return dict(results)


if __name__ == "__main__":
    builder = BurstBuilder(aws=AWS(region="us-east-1", poll_interval=2.0, poll_timeout=600))
    builder.add_set("server", 1, MachineSetup("c5.large", AMI, start_server))
    builder.add_set("client", 4, MachineSetup("c5.large", AMI, install_iperf))
    builder.set_logger(LogConfig(level="INFO", file="burst.log"))

    for host, gbps in builder.run(measure).items():
        print(f"{host}: {gbps:.2f} Gbit/s")
