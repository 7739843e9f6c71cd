"""Package-manager adapters — apt, flatpak, snap, pip."""
