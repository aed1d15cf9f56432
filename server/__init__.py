"""REST API for the PHP-FPM pool manager."""
