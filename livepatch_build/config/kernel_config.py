#!/usr/bin/env python3
"""
Kernel configuration parser for the live-patch build.
Handles parsing of the target kernel's .config file.
"""

import re
from typing import Dict, List, Optional
from pathlib import Path


class KernelConfigParser:
    """Parser for kernel configuration files (.config / defconfig format)."""
    
    def __init__(self):
        self.config_options: Dict[str, str] = {}
        
    def parse_config(self, config_path: str) -> Dict[str, str]:
        """
        Parse a kernel configuration file and return configuration options.
        
        Args:
            config_path: Path to the .config file
            
        Returns:
            Dictionary of configuration options
        """
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
            
        config_options = {}
        
        with open(config_path, 'r') as f:
            for line in f:
                line = line.strip()
                
                if not line:
                    continue
                    
                if line.startswith('#'):
                    # "# CONFIG_FOO is not set"
                    disabled_match = re.match(r'# (CONFIG_\w+) is not set', line)
                    if disabled_match:
                        config_options[disabled_match.group(1)] = 'n'
                    continue
                    
                if line.startswith('CONFIG_'):
                    if '=' in line:
                        key, value = line.split('=', 1)
                        config_options[key] = value.strip('"')
                    else:
                        config_options[line] = 'y'
                        
        self.config_options = config_options
        return config_options
        
    def get_option(self, option_name: str) -> Optional[str]:
        """Get the value of a configuration option."""
        return self.config_options.get(option_name)
        
    def is_enabled(self, option_name: str) -> bool:
        """Check if a configuration option is enabled (built in or modular)."""
        return self.get_option(option_name) in ('y', 'm')
        
    def is_disabled(self, option_name: str) -> bool:
        """Check if a configuration option is explicitly disabled or absent."""
        return not self.is_enabled(option_name)


class LivepatchRequirements:
    """Kernel configuration facts the live-patch build depends on."""
    
    REQUIRED_OPTIONS = {
        'CONFIG_DEBUG_INFO': 'y',
    }
    
    # Options that make the compiled objects impossible to diff reliably
    UNSUPPORTED_OPTIONS: List[str] = [
        'CONFIG_DEBUG_INFO_SPLIT',
        'CONFIG_GCC_PLUGIN_LATENT_ENTROPY',
        'CONFIG_GCC_PLUGIN_RANDSTRUCT',
    ]
    
    NATIVE_LIVEPATCH_OPTION = 'CONFIG_LIVEPATCH'
    PARAVIRT_OPTION = 'CONFIG_PARAVIRT'
