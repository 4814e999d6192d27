"""Shared fixtures: sample documents and a scripted completion service."""

import threading

import pytest

SCHEDULE_TEXT = (
    "THE FARMHOUSE\n"
    "Shooting Schedule: Version 3\n"
    "CAST\n"
    "1. INGA\n"
    "2. JOHN\n"
    "3. MARGOT\n"
    "4. TAXI DRIVER\n"
    "\n"
    "Day 1\n"
    "4A\tEXT\tFARMHOUSE - DRIVEWAY\tDay\t1/8 pgs\tTAXI passes the road to the Farmhouse\t1, 2\t0:30\tD5\n"
    "6\tINT\tKITCHEN\tNight\t2/8 pgs\tInga makes tea\t3\t1:00\tN1\n"
    "End of Shooting Day 1 -- Tuesday, 21 May 2024 -- 3/8 Pages\n"
    "Day 2\n"
    "Scene\tINT\tFARMHOUSE\tEst. Time\n"
    "7\t1 6/8 pgs\tDay\tThey meet INGA & JOHN\t1:30\tD5\n"
    "1, 2, 4, 7\n"
    "End of Shooting Day 2 -- Wednesday, 22 May 2024 -- 1 6/8 Pages\n"
)

SCRIPT_TEXT = (
    "THE FARMHOUSE\n"
    "\n"
    "1 INT. KITCHEN - NIGHT 1\n"
    "\n"
    "Inga pours tea.\n"
    "\n"
    "INGA\n"
    "Sit down.\n"
    "\n"
    "JOHN (O.S.)\n"
    "I'm coming.\n"
    "\n"
    "2 EXT. FARMHOUSE - DAY 2\n"
    "\n"
    "JOHN\n"
    "Beautiful morning.\n"
    "\n"
    "INGA (CONT'D)\n"
    "It is.\n"
)


class ScriptedService:
    """
    Stand-in for CompletionService.

    `responder(prompt)` returns the completion text or raises.
    """

    def __init__(self, responder):
        self.responder = responder
        self.prompts = []
        self._lock = threading.Lock()

    def complete(self, prompt, system=None, max_tokens=4000, max_retries=3):
        with self._lock:
            self.prompts.append(prompt)
        return self.responder(prompt)


@pytest.fixture
def schedule_text():
    return SCHEDULE_TEXT


@pytest.fixture
def script_text():
    return SCRIPT_TEXT


@pytest.fixture
def scripted_service():
    """Factory for ScriptedService instances."""
    return ScriptedService
