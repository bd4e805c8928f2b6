"""Mobile-money payment for settled trips."""
