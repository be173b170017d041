"""CNI result helpers, link operations and VM static network settings."""