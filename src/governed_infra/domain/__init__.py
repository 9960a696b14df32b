"""Domain models shared across policy, execution, scanning and remediation."""
