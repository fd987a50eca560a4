#!/usr/bin/env python3
"""Walk a fresh deployment through a full election against a running gateway.

Expects the contract in NotStarted state and VOTER_ADDRESS unlocked on the node.
"""
import requests, os

BASE = os.getenv("BASE_URL", "http://localhost:3000")
VOTER = os.getenv("VOTER_ADDRESS", "0x70997970C51812dc3A010C7d01b50e0d17dc79C8")

r = requests.get(f"{BASE}/health")
r.raise_for_status()
assert r.json()["initialized"], "gateway is not connected to the node"

# 1. candidates
for name in ("Alice", "Bob"):
    r = requests.post(f"{BASE}/api/candidates", json={"name": name})
    r.raise_for_status()
    print("added", r.json()["candidateIndex"], name)

# 2. open the vote
requests.post(f"{BASE}/api/start").raise_for_status()
assert requests.get(f"{BASE}/api/status").json()["stateName"] == "InProgress"

# 3. one vote, then a rejected second one
r = requests.post(f"{BASE}/api/vote", json={"voterAddress": VOTER, "candidateIndex": 1})
r.raise_for_status()
assert requests.get(f"{BASE}/api/has-voted/{VOTER}").json()["hasVoted"] is True
r = requests.post(f"{BASE}/api/vote", json={"voterAddress": VOTER, "candidateIndex": 0})
assert r.status_code == 409, r.text

# 4. close and read the result
requests.post(f"{BASE}/api/end").raise_for_status()
winner = requests.get(f"{BASE}/api/winner").json()
assert winner["winner"] == "Bob", winner

print("E2E workflow succeeded:", winner["message"])
