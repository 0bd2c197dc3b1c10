"""
SecureDrive Ledger Server
=========================
FastAPI reference ledger that:
1. Registers each owner's Paillier public key (verifier)
2. Stores encrypted vehicle and trip records
3. Computes insurance premiums homomorphically
4. Commits a premium only after verifying the owner's derived share r'

The ledger never holds a private key.
"""

import os
import sys
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
import uvicorn

# Add parent to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from paillier_core.encryption_core import EncryptedRecord
from paillier_core.errors import VerificationFailed
from paillier_core.keys import PublicKey
from paillier_core.security_logger import SecurityLogger
from paillier_core.serialization import decode_int
from server.premium_processor import (
    Conflict,
    CriteriaWeights,
    LedgerConfig,
    NotFound,
    PremiumProcessor
)


# ==================== PYDANTIC MODELS ====================

class VerifierRequest(BaseModel):
    """Owner public key registration"""
    ownerID: str
    n: str
    nsquare: Optional[str] = None


class VehicleDataRequest(BaseModel):
    """Encrypted vehicle record"""
    vehicleID: str
    ownerID: str
    record: Dict[str, Any]


class TripDataRequest(BaseModel):
    """Encrypted trip record"""
    tripID: str
    vehicleID: str
    date: str
    record: Dict[str, Any]


class CriteriaWeightsRequest(BaseModel):
    """Public premium weights"""
    criteriaweightID: str
    weight_traffic: int
    weight_speed: int
    weight_acceleration: int
    weight_braking: int
    weight_distance: int
    weight_zone: int
    weight_time: int
    alpha: int
    beta: int


class CalculateRequest(BaseModel):
    vehicleID: str
    tripID: str
    criteriaWeightsID: str


class FinalizeRequest(BaseModel):
    """Owner's derived share for a pending result"""
    resultID: str
    rPrime: str


# ==================== SERVER CLASS ====================

class LedgerServer:
    """
    Ledger state behind the HTTP API

    Manages:
    - Premium processor (verifiers, records, results)
    - Security audit log
    """

    def __init__(self,
                 config: Optional[LedgerConfig] = None,
                 audit_log: Optional[str] = None):
        self.security_logger = SecurityLogger(audit_log)
        self.processor = PremiumProcessor(config, self.security_logger)

        self.requests_received = 0
        self.server_start_time = datetime.now()

    def get_status(self) -> dict:
        uptime = (datetime.now() - self.server_start_time).total_seconds()
        return {
            "status": "running",
            "uptime_seconds": round(uptime, 1),
            "requests_received": self.requests_received,
            "ledger": self.processor.get_stats(),
            "audit_clean": self.security_logger.verify_no_violations()
        }


@contextmanager
def ledger_errors():
    """Map ledger and cryptographic failures to HTTP errors"""
    ledger.requests_received += 1
    try:
        yield
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Conflict as e:
        raise HTTPException(status_code=409, detail=str(e))
    except VerificationFailed as e:
        raise HTTPException(status_code=422, detail=str(e))
    except (KeyError, TypeError) as e:
        raise HTTPException(status_code=400, detail=f"Malformed payload: {e}")
    except ValueError as e:
        # PaillierError and decimal-string decoding failures
        raise HTTPException(status_code=400, detail=str(e))


# ==================== GLOBAL SERVER INSTANCE ====================

ledger = LedgerServer(audit_log=os.environ.get("SECUREDRIVE_AUDIT_LOG"))


# ==================== FASTAPI APP ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager"""
    print("\n" + "=" * 60)
    print("🚀 SecureDrive Ledger Starting")
    print("=" * 60)
    print("   Encryption: Paillier (additive, g = n + 1)")
    print("   Decryption: split (owner derives r', ledger verifies)")
    print("=" * 60 + "\n")

    yield

    report = ledger.security_logger.generate_audit_report()
    print(f"\n🛑 SecureDrive Ledger Shutting Down ({report['total_log_entries']} audited operations)")


app = FastAPI(
    title="SecureDrive Ledger",
    description="Homomorphic insurance premium ledger with split decryption",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ==================== API ENDPOINTS ====================

@app.get("/")
async def root():
    """Server info"""
    return {
        "name": "SecureDrive Ledger",
        "version": "1.0.0",
        "status": "running",
        "encryption": "Paillier"
    }


@app.get("/status")
async def get_status():
    return ledger.get_status()


@app.post("/api/addVerifier", status_code=201)
async def add_verifier(request: VerifierRequest):
    """Register an owner's public key (once per owner)"""
    with ledger_errors():
        public_key = PublicKey.from_dict(request.model_dump(exclude_none=True))
        ledger.processor.register_verifier(request.ownerID, public_key)
    return {"status": "registered", "ownerID": request.ownerID,
            "fingerprint": public_key.fingerprint()}


@app.get("/api/queryVerifier/{owner_id}")
async def query_verifier(owner_id: str):
    with ledger_errors():
        public_key = ledger.processor.get_verifier(owner_id)
    return {"ownerID": owner_id, **public_key.to_dict()}


@app.post("/api/addEncryptedVehicleData", status_code=201)
async def add_vehicle_data(request: VehicleDataRequest):
    with ledger_errors():
        record = EncryptedRecord.from_dict(request.record)
        ledger.processor.add_vehicle(request.vehicleID, request.ownerID, record)
    return {"status": "stored", "vehicleID": request.vehicleID}


@app.post("/api/addEncryptedTripData", status_code=201)
async def add_trip_data(request: TripDataRequest):
    with ledger_errors():
        record = EncryptedRecord.from_dict(request.record)
        ledger.processor.add_trip(request.tripID, request.vehicleID, request.date, record)
    return {"status": "stored", "tripID": request.tripID}


@app.post("/api/addCriteriaWeight", status_code=201)
async def add_criteria_weight(request: CriteriaWeightsRequest):
    with ledger_errors():
        weights = CriteriaWeights.from_dict(request.model_dump())
        ledger.processor.add_criteria_weights(weights)
    return {"status": "stored", "criteriaweightID": request.criteriaweightID}


@app.get("/api/queryAllCriteriaWeights")
async def query_all_criteria_weights():
    return {
        "criteria_weights": [w.to_dict() for w in ledger.processor.criteria_weights.values()]
    }


@app.post("/api/calculateInsurancePremium", status_code=201)
async def calculate_premium(request: CalculateRequest):
    """Compute the encrypted premium for a trip"""
    with ledger_errors():
        result = ledger.processor.calculate_premium(
            request.vehicleID, request.tripID, request.criteriaWeightsID
        )
    return result.to_dict()


@app.get("/api/queryEncryptedCalculationResult/{result_id}")
async def query_calculation_result(result_id: str):
    """Split-decryption request for a pending result: (resultID, R, fingerprint)"""
    with ledger_errors():
        request = ledger.processor.get_split_request(result_id)
    return request.to_dict()


@app.get("/api/queryResultsByVehicleID/{vehicle_id}")
async def query_results_by_vehicle(vehicle_id: str):
    return {
        "results": [r.to_dict() for r in ledger.processor.query_results_by_vehicle(vehicle_id)]
    }


@app.post("/api/decryptInsurancePremiumAndUpdate")
async def finalize_premium(request: FinalizeRequest):
    """Verify r', decrypt and commit the premium"""
    with ledger_errors():
        prime = ledger.processor.finalize(request.resultID, decode_int(request.rPrime))
    return {"status": "committed", "resultID": request.resultID, **prime.to_dict()}


@app.get("/api/queryPrimesByVehicleID/{vehicle_id}")
async def query_primes_by_vehicle(vehicle_id: str):
    return {
        "vehicleID": vehicle_id,
        "primes": [p.to_dict() for p in ledger.processor.query_primes_by_vehicle(vehicle_id)]
    }


@app.get("/api/queryMonthPrime/{vehicle_id}/{month}/{year}")
async def query_month_prime(vehicle_id: str, month: int, year: int):
    with ledger_errors():
        month_prime = ledger.processor.query_month_prime(vehicle_id, month, year)
    return month_prime.to_dict()


@app.get("/api/audit")
async def get_audit_report():
    """What the ledger has seen, by data type"""
    return ledger.security_logger.generate_audit_report()


# ==================== MAIN ====================

def main(host: str = "0.0.0.0", port: int = 8000):
    """Run the server"""
    uvicorn.run(
        "server.server:app",
        host=host,
        port=port,
        reload=False,
        log_level="info"
    )


if __name__ == "__main__":
    import argparse
    parser = argparse.ArgumentParser(description="SecureDrive Ledger Server")
    parser.add_argument("--host", default="0.0.0.0", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    args = parser.parse_args()

    main(args.host, args.port)
