"""
process_check.py: is the application that owns the mailbox still running?

Patching a mailbox while its owner has it open corrupts it, so callers check
this before starting a file session.
"""

import psutil

from substitutor.substitution_types import OwningProcessRunningError

OWNER_IMAGE_NAME = "Eudora.exe"


def running_process_names():
    names = []
    # process_iter drops processes that exit mid-iteration and leaves inaccessible names as None
    for proc in psutil.process_iter(["name"]):
        name = proc.info.get("name")
        if name:
            names.append(name)
    return names


def is_owning_process_running(image_name: str = OWNER_IMAGE_NAME, debug: bool = False) -> bool:
    target = image_name.lower()
    for name in running_process_names():
        if name.lower() == target:
            if debug:
                print(f"[ProcessCheck][DEBUG] found running process {name}", flush=True)
            return True
    return False


def ensure_owner_not_running(image_name: str = OWNER_IMAGE_NAME, debug: bool = False):
    if is_owning_process_running(image_name, debug=debug):
        name = image_name[:-4] if image_name.lower().endswith(".exe") else image_name
        raise OwningProcessRunningError(f"{name} is running; stop it first")
