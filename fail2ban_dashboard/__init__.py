from fail2ban_dashboard.constants import __version__
