"""Services — setup plan, browser strategies, reboot handling."""
