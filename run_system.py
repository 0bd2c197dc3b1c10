#!/usr/bin/env python3
"""
SecureDrive System Launcher
===========================
Unified script for the encrypted premium system:
1. keygen  - provision an owner's Paillier key pair
2. demo    - run a full premium round in-process (no network)
3. server  - start the ledger, optionally with an owner agent driving it
"""

import argparse
import asyncio
import os
import signal
import sys
from pathlib import Path
from typing import Dict, Optional

# Add project root to path
PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from paillier_core import (
    EncryptedFileKeyStore,
    Encryptor,
    KeyGenConfig,
    KeyGenerator,
    SecurityLogger,
    SplitDecryptionCoordinator
)
from sensors.trip_simulator import BEHAVIOUR_PROFILES, TripSimulator, VehicleData
from server.premium_processor import CriteriaWeights, PremiumProcessor


DEFAULT_KEYS_DIR = os.environ.get("SECUREDRIVE_KEYS_DIR", "./.keys")

DEMO_WEIGHTS = {
    'criteriaweightID': 'CW1',
    'weight_traffic': 5,
    'weight_speed': 2,
    'weight_acceleration': 3,
    'weight_braking': 4,
    'weight_distance': 1,
    'weight_zone': 2,
    'weight_time': 1,
    'alpha': 2,
    'beta': 3
}


def print_banner():
    """Print startup banner"""
    banner = """
╔═══════════════════════════════════════════════════════════════╗
║                                                               ║
║   🔐  SecureDrive - Encrypted Insurance Premiums              ║
║                                                               ║
║   Paillier telemetry, split decryption, no key on the ledger  ║
║                                                               ║
╚═══════════════════════════════════════════════════════════════╝
    """
    print(banner)


def make_key_generator(args) -> KeyGenerator:
    return KeyGenerator(KeyGenConfig(min_prime=args.min_prime, max_prime=args.max_prime))


def cmd_keygen(args):
    """Generate (or show) the owner's key pair"""
    store = EncryptedFileKeyStore(args.keys_dir)
    existed = args.owner in store
    keypair = store.get_or_create(args.owner, make_key_generator(args))

    status = "Existing" if existed else "New"
    print(f"🔑 {status} key pair for '{args.owner}'")
    print(f"   n:           {keypair.n}")
    print(f"   fingerprint: {keypair.fingerprint()}")
    print(f"   stored in:   {store.storage_path}")


def run_demo(owner_id: str,
             vehicle: VehicleData,
             behaviour: str,
             mileage: int,
             trips: int,
             key_generator: KeyGenerator,
             keys_dir: str,
             seed: Optional[int] = None) -> Dict[str, int]:
    """
    One owner, one ledger, `trips` premium rounds, all in-process.

    Returns trip_id -> committed premium.
    """
    audit = SecurityLogger()
    ledger = PremiumProcessor(security_logger=audit)
    store = EncryptedFileKeyStore(keys_dir)

    keypair = store.get_or_create(owner_id, key_generator)
    ledger.register_verifier(owner_id, keypair.public_key)
    print(f"✓ Verifier registered for '{owner_id}' (fingerprint {keypair.fingerprint()})")

    entity = f"owner:{owner_id}"
    encryptor = Encryptor(keypair.public_key, security_logger=audit, entity=entity)
    coordinator = SplitDecryptionCoordinator(store, owner_id, audit)

    ledger.add_vehicle(vehicle.vehicle_id, owner_id,
                       encryptor.encrypt_record('vehicle', vehicle.values()))
    ledger.add_criteria_weights(CriteriaWeights.from_dict(DEMO_WEIGHTS))
    print(f"✓ Vehicle '{vehicle.vehicle_id}' stored encrypted")

    simulator = TripSimulator(vehicle.vehicle_id, seed=seed)
    committed: Dict[str, int] = {}

    for _ in range(trips):
        trip = simulator.generate_trip(behaviour, mileage)
        while trip.trip_id in ledger.trips:
            trip = simulator.generate_trip(behaviour, mileage)

        ledger.add_trip(trip.trip_id, trip.vehicle_id, trip.date,
                        encryptor.encrypt_record('trip', trip.values()))
        result = ledger.calculate_premium(vehicle.vehicle_id, trip.trip_id,
                                          DEMO_WEIGHTS['criteriaweightID'])

        revealed, response = coordinator.handle(ledger.get_split_request(result.result_id))
        prime = ledger.finalize(response.result_id, response.r_prime)
        committed[trip.trip_id] = prime.prime

        record = ledger.trips[trip.trip_id].record
        print(f"🚗 {trip.trip_id} ({behaviour}): speeding={trip.speeding} "
              f"enc={record.get_display_ciphertext('speeding')}")
        print(f"   premium: ledger={prime.prime} owner={revealed}")

    summary = audit.get_ledger_summary()
    print("\n" + "=" * 60)
    print(f"📊 Ledger handled: {', '.join(summary['data_types_handled'])}")
    print(f"   Private key access: {summary['private_key_access']}")
    print(f"   Privacy preserved:  {summary['privacy_preserved']}")
    print("=" * 60)
    return committed


def cmd_demo(args):
    print_banner()
    vehicle = VehicleData(
        vehicle_id=args.vehicle,
        vehicle_type=args.vehicle_type,
        purchase_mileage=args.purchase_mileage,
        year=args.year
    )
    run_demo(
        owner_id=args.owner,
        vehicle=vehicle,
        behaviour=args.behaviour,
        mileage=args.mileage,
        trips=args.trips,
        key_generator=make_key_generator(args),
        keys_dir=args.keys_dir,
        seed=args.seed
    )


async def run_owner_agent(ledger_url: str, args):
    """Drive the ledger over HTTP as one owner"""
    from sensors.owner_agent import OwnerAgent, OwnerAgentConfig

    config = OwnerAgentConfig(ledger_url=ledger_url, owner_id=args.owner)
    store = EncryptedFileKeyStore(args.keys_dir)
    vehicle = VehicleData(args.vehicle, args.vehicle_type, args.purchase_mileage, args.year)
    simulator = TripSimulator(vehicle.vehicle_id, seed=args.seed)

    async with OwnerAgent(config, store, make_key_generator(args)) as agent:
        await agent.register_public_key()
        await agent.submit_vehicle(vehicle)
        await agent.submit_criteria_weights(DEMO_WEIGHTS)
        print(f"📡 Owner agent '{args.owner}' registered with {ledger_url}")

        for _ in range(args.trips):
            trip = simulator.generate_trip(args.behaviour, args.mileage)
            await agent.submit_trip(trip)
            result = await agent.calculate_premium(
                vehicle.vehicle_id, trip.trip_id, DEMO_WEIGHTS['criteriaweightID']
            )
            committed = await agent.finalize_premium(result['resultID'])
            print(f"🚗 {trip.trip_id}: committed premium {committed['prime']}")


async def run_server(host: str, port: int):
    """Run the FastAPI ledger"""
    import uvicorn

    config = uvicorn.Config(
        "server.server:app",
        host=host,
        port=port,
        log_level="info",
        reload=False
    )
    server = uvicorn.Server(config)
    await server.serve()


async def server_async(args):
    # Server binds to 0.0.0.0 but the agent connects to localhost
    connect_host = "127.0.0.1" if args.host == "0.0.0.0" else args.host
    ledger_url = f"http://{connect_host}:{args.port}"

    print_banner()
    print(f"🖥️  Ledger: http://{args.host}:{args.port}")

    tasks = [asyncio.create_task(run_server(args.host, args.port))]

    # Wait for server to start
    await asyncio.sleep(2)

    if args.agent:
        tasks.append(asyncio.create_task(run_owner_agent(ledger_url, args)))

    print("\n✓ System running. Press Ctrl+C to stop.\n")
    print("=" * 60)

    try:
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        pass


def cmd_server(args):
    def signal_handler(sig, frame):
        print("\n\n🛑 Shutting down...")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)

    try:
        asyncio.run(server_async(args))
    except KeyboardInterrupt:
        print("\n🛑 System stopped.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="SecureDrive System Launcher",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_system.py keygen --owner alice
  python run_system.py demo --behaviour bad --trips 3
  python run_system.py server --port 8000 --agent
        """
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--owner", default="owner1", help="Owner id (default: owner1)")
    common.add_argument("--keys-dir", default=DEFAULT_KEYS_DIR,
                        help=f"Private key directory (default: {DEFAULT_KEYS_DIR})")
    common.add_argument("--min-prime", type=int, default=1000, help="Lower prime bound (inclusive)")
    common.add_argument("--max-prime", type=int, default=10000, help="Upper prime bound (exclusive)")

    trips = argparse.ArgumentParser(add_help=False)
    trips.add_argument("--vehicle", default="V1", help="Vehicle id")
    trips.add_argument("--vehicle-type", type=int, default=2)
    trips.add_argument("--purchase-mileage", type=int, default=15000)
    trips.add_argument("--year", type=int, default=2020)
    trips.add_argument("--behaviour", choices=sorted(BEHAVIOUR_PROFILES), default="average")
    trips.add_argument("--mileage", type=int, default=120, help="Mileage per trip")
    trips.add_argument("--trips", type=int, default=1, help="Number of trips")
    trips.add_argument("--seed", type=int, default=None, help="Trip simulator seed")

    sub = parser.add_subparsers(dest="command", required=True)

    keygen = sub.add_parser("keygen", parents=[common], help="Provision an owner key pair")
    keygen.set_defaults(func=cmd_keygen)

    demo = sub.add_parser("demo", parents=[common, trips], help="In-process premium round")
    demo.set_defaults(func=cmd_demo)

    server = sub.add_parser("server", parents=[common, trips], help="Run the ledger server")
    server.add_argument("--host", default="0.0.0.0", help="Host to bind server (default: 0.0.0.0)")
    server.add_argument("--port", type=int, default=8000, help="Port for server (default: 8000)")
    server.add_argument("--agent", action="store_true", help="Also run an owner agent against it")
    server.set_defaults(func=cmd_server)

    return parser


def main(argv=None):
    """Main entry point"""
    args = build_parser().parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
