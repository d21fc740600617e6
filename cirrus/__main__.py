from cirrus.cli import main

raise SystemExit(main())
